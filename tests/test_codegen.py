from helpers import make_model, value_info
from sonnx_compiler import CodeGenerator, SAMPLE_MODEL, generate, parse, tokenize


def tac_of(source):
    return generate(parse(tokenize(source)))


def test_add_model(scenario_add):
    assert tac_of(scenario_add) == [
        "; MODEL DEFINITION",
        "; GRAPH: g",
        't0 = INPUT("x", FLOAT, )',
        't1 = INPUT("y", FLOAT, )',
        "t2 = ADD(t0, t1) ; n1",
        'OUTPUT("z", t2)',
    ]


def test_sections_are_emitted_in_canonical_order():
    source = make_model(
        'node { op_type = "MatMul" name = "mm" input = [x, w] output = [h] }\n'
        'node { op_type = "Relu" name = "act" input = [h] output = [y] }\n'
        f'input {{ {value_info("x", "float", [1, 4])} }}\n'
        f'output {{ {value_info("y")} }}\n'
        'initializer { name = "w" data_type = float dims = 4 2 raw_data = "0a0b" }\n'
    )
    assert tac_of(source) == [
        "; MODEL DEFINITION",
        "; GRAPH: g",
        't0 = INPUT("x", FLOAT, [1,4])',
        't1 = INITIALIZER("w", FLOAT, [4,2], "0a0b")',
        "t2 = MATMUL(t0, t1) ; mm",
        "t3 = RELU(t2) ; act",
        'OUTPUT("y", t3)',
    ]


def test_symbolic_dims_and_missing_raw_data():
    x_info = value_info("x", "float", ['"N"', 3])
    source = make_model(
        'node { op_type = "Add" name = "a" input = [x, b] output = [y] }\n'
        f'input {{ {x_info} }}\n'
        f'output {{ {value_info("y")} }}\n'
        'initializer { name = "b" data_type = float dims = }\n'
    )
    tac = tac_of(source)
    assert tac[2] == 't0 = INPUT("x", FLOAT, [N,3])'
    assert tac[3] == 't1 = INITIALIZER("b", FLOAT, , "")'


def test_multiple_outputs_and_attributes():
    source = make_model(
        'node { op_type = "Split" name = "s" input = [x] output = [lo, hi]\n'
        '       attribute { name = "axis" value = 1 }\n'
        '       attribute { name = "mode" value = "even" } }\n'
        f'input {{ {value_info("x")} }}\n'
        f'output {{ {value_info("lo")} {value_info("hi")} }}\n'
    )
    assert tac_of(source)[3:] == [
        "t1, t2 = SPLIT(t0, axis=1, mode=even) ; s",
        'OUTPUT("lo", t1)',
        'OUTPUT("hi", t2)',
    ]


def test_unknown_names_pass_through():
    source = make_model(
        'node { op_type = "Add" name = "a" input = [x, later, 5] output = [y] }\n'
        'node { op_type = "Relu" name = "b" input = [y] output = [later] }\n'
        f'input {{ {value_info("x")} }}\n'
        f'output {{ {value_info("y")} {value_info("ghost")} }}\n'
    )
    assert tac_of(source)[2:] == [
        't0 = INPUT("x", FLOAT, )',
        "t1 = ADD(t0, later, 5) ; a",
        "t2 = RELU(t1) ; b",
        'OUTPUT("y", t1)',
        'OUTPUT("ghost", ghost)',
    ]


def test_input_without_elem_type_is_skipped():
    source = make_model(
        'node { op_type = "Relu" name = "r" input = [x] output = [y] }\n'
        f'input {{ {value_info("x", None, [2])} }}\n'
        f'output {{ {value_info("y")} }}\n'
    )
    assert tac_of(source)[2:] == ["t0 = RELU(x) ; r", 'OUTPUT("y", t0)']


def test_opset_imports_follow_the_graph():
    source = make_model(
        'node { op_type = "Relu" name = "r" input = [x] output = [y] }\n'
        f'input {{ {value_info("x")} }}\n'
        f'output {{ {value_info("y")} }}\n',
        'opset_import { domain = "ai.onnx" version = 13 }\n'
        'opset_import { domain = "" version = 1 }\n',
    )
    tac = tac_of(source)
    assert tac[-2:] == ['OUTPUT("y", t1)', "; OPSET ai.onnx VERSION 13"]


def test_rebinding_a_name_uses_the_latest_temporary():
    source = make_model(
        'node { op_type = "Relu" name = "a" input = [x] output = [x] }\n'
        'node { op_type = "Relu" name = "b" input = [x] output = [y] }\n'
        f'input {{ {value_info("x")} }}\n'
        f'output {{ {value_info("y")} }}\n'
    )
    assert tac_of(source)[2:] == [
        't0 = INPUT("x", FLOAT, )',
        "t1 = RELU(t0) ; a",
        "t2 = RELU(t1) ; b",
        'OUTPUT("y", t2)',
    ]


def test_generator_state_is_reset_per_call(scenario_add):
    gen = CodeGenerator()
    ast = parse(tokenize(scenario_add))
    first = gen.generate(ast)
    second = gen.generate(ast)
    assert first == second
    assert gen.temps == {"x": "t0", "y": "t1", "z": "t2"}
    assert gen.shapes == {"x": "", "y": ""}


def test_sample_model():
    assert generate(parse(tokenize(SAMPLE_MODEL))) == [
        "; MODEL DEFINITION",
        "; GRAPH: cnn",
        't0 = INPUT("x", FLOAT, [N,3])',
        't1 = INITIALIZER("w0", FLOAT, [8,3,3,3], "0a0bb")',
        "t2 = CONV(t0, t1, kernel_shape=3) ; conv0",
        "t3 = RELU(t2) ; relu0",
        'OUTPUT("y", t3)',
        "; OPSET ai.onnx VERSION 13",
    ]


def test_output_declared_twice_is_emitted_once():
    source = make_model(
        'node { op_type = "Relu" name = "a" input = [x] output = [y]\n'
        '       op_type = "Relu" name = "b" input = [x] output = [y] }\n'
        f'input {{ {value_info("x")} }}\n'
        f'output {{ {value_info("y")} }}\n'
    )
    tac = tac_of(source)
    assert tac[3:] == ["t1 = RELU(t0) ; a", "t2 = RELU(t0) ; b", 'OUTPUT("y", t2)']
    assert [line for line in tac if line.startswith("OUTPUT(")] == ['OUTPUT("y", t2)']
