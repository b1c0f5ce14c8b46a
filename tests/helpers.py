HEADER = '''ModelProto {
    ir_version = 7
    producer_name = "tests"
    producer_version = "0.1"
    domain = "ai.tests"
    model_version = 1
    doc_string = "unit test model"
    graph {
        name = "g"
'''


def value_info(name, elem_type="float", dims=None):
    shape = ""
    if dims:
        entries = []
        for d in dims:
            key = "dim_value" if str(d).lstrip("-").isdigit() else "dim_param"
            entries.append(f"dim {{ {key} = {d} }}")
        shape = " shape { " + " ".join(entries) + " }"
    elem = f"elem_type = {elem_type}" if elem_type else ""
    return f'name = "{name}" type {{ tensor_type {{ {elem}{shape} }} }}'


def make_model(graph, opsets=""):
    return HEADER + graph + "\n    }\n" + opsets + "\n}\n"


def position_of(source, needle, start=0):
    offset = source.index(needle, start)
    line = source.count("\n", 0, offset) + 1
    column = offset - (source.rfind("\n", 0, offset) + 1) + 1
    return line, column
