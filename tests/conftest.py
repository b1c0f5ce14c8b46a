import pytest

from helpers import make_model, value_info


@pytest.fixture
def scenario_add():
    # x + y -> z, the smallest complete model
    return make_model(
        'node { op_type = "Add" name = "n1" input = [x, y] output = [z] }\n'
        f'input {{ {value_info("x")} }}\n'
        f'input {{ {value_info("y")} }}\n'
        f'output {{ {value_info("z")} }}\n'
    )
