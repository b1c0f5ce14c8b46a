#!/usr/bin/env python3
"""
sonnx_compiler.py
Single-file front-end for S-ONNX model text (lexer → recursive-descent parser
→ semantic analysis → TAC IR).

Each stage fully materializes its output before the next one starts. Lexing
and parsing stop at the first fatal error; semantic analysis collects every
error it finds and reports them together.
"""

import logging
import re
import sys
from collections import namedtuple
from enum import Enum

logger = logging.getLogger(__name__)

# =====================================================
# ERRORS & HELPERS
# =====================================================
class CompileError(Exception):
    phase = "Compile"

    def __init__(self, message, line=-1, column=-1):
        super().__init__(message)
        self.message = message
        self.line = line
        self.column = column

    def __str__(self):
        return f"{self.phase} error: {format_diagnostic(self.line, self.column, self.message)}"


class LexError(CompileError):
    phase = "Lexical"

    def __init__(self, char, line, column):
        super().__init__(f"Unexpected character {char!r}", line, column)
        self.char = char


class ParseError(CompileError):
    phase = "Syntax"


# non-fatal parser warning
Diagnostic = namedtuple('Diagnostic', ['message', 'line', 'column'])


def format_diagnostic(line, column, message):
    return f"Line {line}:{column} - {message}"


def unquote(text):
    """Strip one pair of surrounding double quotes; names compare on this form."""
    if text is None:
        return ""
    if len(text) >= 2 and text[0] == '"' and text[-1] == '"':
        return text[1:-1]
    return text

# =====================================================
# LEXER
# =====================================================
Token = namedtuple('Token', ['type', 'value', 'line', 'column'])

KEYWORDS = (
    'ModelProto', 'graph', 'name', 'node', 'input', 'output', 'op_type',
    'attribute', 'initializer', 'doc_string', 'domain', 'model_version',
    'producer_name', 'producer_version', 'ir_version', 'tensor_type',
    'elem_type', 'shape', 'dim_value', 'dim_param', 'dims', 'dim', 'raw_data',
    'opset_import', 'data_type', 'version', 'value', 'type',
    'int', 'float', 'string', 'bool',
)


class Lexer:
    # priority order; the longest match wins and ties go to the earlier entry
    token_specification = [
        ("WHITESPACE", r'\s+'),
        ("KEYWORD",    '|'.join(sorted(KEYWORDS, key=len, reverse=True))),
        ("BYTES",      r'[0-9A-Fa-f]+b'),
        ("INTEGER",    r'[-+]?\d+[lL]?'),
        ("STRING",     r'"(?:\\.|[^"\\])*"'),
        ("IDENTIFIER", r'[A-Za-z_][A-Za-z0-9_]*'),
        ("SYMBOL",     r'[\[\]{}=,]'),
    ]
    patterns = [(kind, re.compile(p)) for kind, p in token_specification]

    def __init__(self, code):
        self.code = code
        self.pos = 0
        self.line = 1
        self.column = 1
        self.tokens = []
        self._tokenize()

    def _longest_match(self):
        best_kind, best_text = None, ""
        for kind, pattern in self.patterns:
            mo = pattern.match(self.code, self.pos)
            if mo and len(mo.group()) > len(best_text):
                best_kind, best_text = kind, mo.group()
        return best_kind, best_text

    def _tokenize(self):
        while self.pos < len(self.code):
            kind, text = self._longest_match()
            if kind is None:
                raise LexError(self.code[self.pos], self.line, self.column)
            if kind != "WHITESPACE":
                self.tokens.append(Token(kind, text, self.line, self.column))
            self._advance(text)
        logger.debug("lexed %d tokens", len(self.tokens))

    def _advance(self, text):
        newlines = text.count('\n')
        if newlines:
            self.line += newlines
            self.column = len(text) - text.rfind('\n')
        else:
            self.column += len(text)
        self.pos += len(text)


def tokenize(code):
    return Lexer(code).tokens

# =====================================================
# AST
# =====================================================
class NodeKind(Enum):
    MODEL_BODY = "model_body"
    IR_VERSION = "ir_version"
    PRODUCER_NAME = "producer_name"
    PRODUCER_VERSION = "producer_version"
    DOMAIN = "domain"
    MODEL_VERSION = "model_version"
    DOC_STRING = "doc_string"
    GRAPH = "graph"
    GRAPH_BODY = "graph_body"
    NAME = "name"
    NODE_LIST = "node_list"
    NODE = "node"
    OP_TYPE = "op_type"
    INPUT_ARR = "input_arr"
    OUTPUT_ARR = "output_arr"
    INPUT_LIST = "input_list"
    OUTPUT_LIST = "output_list"
    VALUE_INFO = "value_info"
    TENSOR_TYPE = "tensor_type"
    ELEM_TYPE = "elem_type"
    SHAPE = "shape"
    DIM_LIST = "dim_list"
    DIM = "dim"
    DIM_VALUE = "dim_value"
    DIM_PARAM = "dim_param"
    ATTRIBUTE_LIST = "attribute_list"
    ATTRIBUTE = "attribute"
    ATTR_VALUE = "value"
    INITIALIZER_LIST = "initializer_list"
    TENSOR = "tensor"
    DATA_TYPE = "data_type"
    DIMS = "dims"
    RAW_DATA = "raw_data"
    OPSET_IMPORTS = "opset_imports"
    OPSET_IMPORT = "opset_import"
    VERSION = "version"
    ITEM = "item"


class ASTNode:
    def __init__(self, kind, value=None, line=-1, column=-1):
        self.kind = kind
        self.value = value
        self.line = line
        self.column = column
        self.children = []

    def add(self, child):
        if child is not None:
            self.children.append(child)
        return child

    def child(self, kind):
        for c in self.children:
            if c.kind is kind:
                return c
        return None

    def children_of(self, kind):
        return [c for c in self.children if c.kind is kind]

    def value_of(self, kind, default=None):
        c = self.child(kind)
        return c.value if c is not None else default

    def to_dict(self):
        return {
            "kind": self.kind.value,
            "value": self.value,
            "line": self.line,
            "column": self.column,
            "children": [c.to_dict() for c in self.children],
        }

    def pretty(self, indent="", last=True):
        label = self.kind.value
        if self.value is not None:
            label += f": {self.value}"
        lines = [indent + ("+-- " if last else "|-- ") + label]
        child_indent = indent + ("    " if last else "|   ")
        for i, c in enumerate(self.children):
            lines.extend(c.pretty(child_indent, i == len(self.children) - 1))
        return lines

    def __repr__(self):
        return f"ASTNode({self.kind.value}, {self.value!r}, {self.line}:{self.column})"

# =====================================================
# PARSER (recursive-descent)
# =====================================================
DATA_TYPES = ('int', 'float', 'string', 'bool')
MODEL_FIELDS = ('ir_version', 'producer_name', 'producer_version',
                'domain', 'model_version', 'doc_string')
# graph sections in the only order they may appear
SECTION_ORDER = ('node', 'input', 'output', 'initializer')
NUMERIC_RE = re.compile(r'-?\d+(\.\d+)?')


class Parser:
    def __init__(self, tokens):
        self.tokens = list(tokens)
        self.pos = 0
        self.diagnostics = []

    # ---- token cursor ----
    def peek(self):
        if self.pos < len(self.tokens):
            return self.tokens[self.pos]
        return None

    def at(self, value):
        tok = self.peek()
        return tok is not None and tok.value == value

    def here(self):
        tok = self.peek()
        if tok is None:
            return -1, -1
        return tok.line, tok.column

    def expect(self, value, msg=None):
        tok = self.peek()
        if tok is None:
            raise ParseError(f"Unexpected end of input. Expected {value}")
        if tok.value != value:
            raise ParseError(msg or f"Expected {value} but found {tok.value}", tok.line, tok.column)
        self.pos += 1
        return tok

    def literal(self, what):
        tok = self.peek()
        if tok is None:
            raise ParseError(f"Unexpected end of input. Expected value for {what}")
        if tok.type == 'SYMBOL':
            raise ParseError(f"Expected value for {what} but found {tok.value}", tok.line, tok.column)
        self.pos += 1
        return tok

    def field(self, key, kind=None):
        self.expect(key)
        self.expect('=')
        tok = self.literal(key)
        return ASTNode(kind or NodeKind(key), tok.value, tok.line, tok.column)

    def enum_field(self, key):
        node = self.field(key)
        if node.value not in DATA_TYPES:
            raise ParseError(f"Expected valid {key} but found {node.value}", node.line, node.column)
        return node

    def warn(self, tok, message):
        self.diagnostics.append(Diagnostic(message, tok.line, tok.column))
        logger.warning(format_diagnostic(tok.line, tok.column, message))

    # ---- model ----
    def parse(self):
        start = self.expect('ModelProto')
        self.expect('{')
        body = ASTNode(NodeKind.MODEL_BODY, line=start.line, column=start.column)
        for key in MODEL_FIELDS:
            body.add(self.field(key))
        body.add(self.graph())
        body.add(self.opset_imports())
        self.expect('}')
        extra = self.peek()
        if extra is not None:
            raise ParseError(f"Unexpected token after model: {extra.value}", extra.line, extra.column)
        return body

    def opset_imports(self):
        line, column = self.here()
        imports = ASTNode(NodeKind.OPSET_IMPORTS, line=line, column=column)
        while self.at('opset_import'):
            tok = self.expect('opset_import')
            self.expect('{')
            imp = ASTNode(NodeKind.OPSET_IMPORT, line=tok.line, column=tok.column)
            imp.add(self.field('domain'))
            imp.add(self.field('version'))
            self.expect('}')
            imports.add(imp)
        return imports

    # ---- graph ----
    def graph(self):
        tok = self.expect('graph')
        self.expect('{')
        graph = ASTNode(NodeKind.GRAPH, line=tok.line, column=tok.column)
        graph.add(self.graph_body())
        self.expect('}')
        return graph

    def graph_body(self):
        line, column = self.here()
        body = ASTNode(NodeKind.GRAPH_BODY, line=line, column=column)
        body.add(self.field('name'))
        sections = {
            'node': self.node_list,
            'input': self.input_list,
            'output': self.output_list,
            'initializer': self.initializer_list,
        }
        seen = {}  # section keyword -> token that first opened it
        while self.peek() is not None and not self.at('}'):
            tok = self.peek()
            if tok.type != 'KEYWORD' or tok.value not in sections:
                # the one recoverable syntax error: skip the stray token
                self.warn(tok, f"Unexpected token in graph body: {tok.value}")
                self.pos += 1
                continue
            self.check_section_order(tok, seen)
            seen.setdefault(tok.value, tok)
            body.add(sections[tok.value]())

        for section in ('node', 'input', 'output'):
            if section not in seen:
                line, column = self.here()
                raise ParseError(f"Missing {section} list", line, column)
        return body

    def check_section_order(self, tok, seen):
        later = SECTION_ORDER[SECTION_ORDER.index(tok.value) + 1:]
        conflicts = [seen[s] for s in later if s in seen]
        if not conflicts:
            return
        first = min(conflicts, key=lambda t: (t.line, t.column))
        raise ParseError(
            f"{tok.value} list (line {tok.line}:{tok.column}) must come before {first.value} list",
            first.line, first.column)

    def node_list(self):
        tok = self.expect('node')
        self.expect('{')
        nodes = ASTNode(NodeKind.NODE_LIST, line=tok.line, column=tok.column)
        nodes.add(self.node_def())
        while self.at('op_type'):
            nodes.add(self.node_def())
        self.expect('}')
        return nodes

    def input_list(self):
        tok = self.expect('input')
        return self.value_info_block(NodeKind.INPUT_LIST, tok)

    def output_list(self):
        tok = self.expect('output')
        return self.value_info_block(NodeKind.OUTPUT_LIST, tok)

    def initializer_list(self):
        line, column = self.here()
        inits = ASTNode(NodeKind.INITIALIZER_LIST, line=line, column=column)
        while self.at('initializer'):
            self.expect('initializer')
            self.expect('{')
            inits.add(self.tensor_def())
            while self.at('name'):
                inits.add(self.tensor_def())
            self.expect('}')
        return inits

    # ---- nodes ----
    def node_def(self):
        line, column = self.here()
        node = ASTNode(NodeKind.NODE, line=line, column=column)
        node.add(self.field('op_type'))
        node.add(self.field('name'))
        node.add(self.port_def('input', NodeKind.INPUT_LIST, NodeKind.INPUT_ARR))
        node.add(self.port_def('output', NodeKind.OUTPUT_LIST, NodeKind.OUTPUT_ARR))
        if self.at('attribute'):
            node.add(self.attribute_list())
        return node

    def port_def(self, key, list_kind, arr_kind):
        # block form: input { ... }   array form: input = [a, b]
        tok = self.expect(key)
        if self.at('{'):
            return self.value_info_block(list_kind, tok)
        if self.at('='):
            self.expect('=')
            self.expect('[')
            return self.value_array(arr_kind, tok)
        line, column = self.here()
        raise ParseError(f"Expected {{ or = after {key}", line, column)

    def value_array(self, kind, start):
        arr = ASTNode(kind, line=start.line, column=start.column)
        tok = self.literal(f"{start.value} list")
        arr.add(ASTNode(NodeKind.ITEM, tok.value, tok.line, tok.column))
        while self.at(','):
            self.expect(',')
            tok = self.literal(f"{start.value} list")
            arr.add(ASTNode(NodeKind.ITEM, tok.value, tok.line, tok.column))
        self.expect(']')
        return arr

    def attribute_list(self):
        line, column = self.here()
        attrs = ASTNode(NodeKind.ATTRIBUTE_LIST, line=line, column=column)
        while self.at('attribute'):
            self.expect('attribute')
            self.expect('{')
            attrs.add(self.attribute_def())
            while self.at('name'):
                attrs.add(self.attribute_def())
            self.expect('}')
        return attrs

    def attribute_def(self):
        line, column = self.here()
        attr = ASTNode(NodeKind.ATTRIBUTE, line=line, column=column)
        attr.add(self.field('name'))
        attr.add(self.field('value', NodeKind.ATTR_VALUE))
        return attr

    # ---- value infos ----
    def value_info_block(self, kind, start):
        self.expect('{')
        block = ASTNode(kind, line=start.line, column=start.column)
        block.add(self.value_info())
        while self.at('name'):
            block.add(self.value_info())
        self.expect('}')
        return block

    def value_info(self):
        line, column = self.here()
        info = ASTNode(NodeKind.VALUE_INFO, line=line, column=column)
        info.add(self.field('name'))
        self.expect('type')
        self.expect('{')
        info.add(self.tensor_type())
        self.expect('}')
        return info

    def tensor_type(self):
        tok = self.expect('tensor_type')
        self.expect('{')
        ttype = ASTNode(NodeKind.TENSOR_TYPE, line=tok.line, column=tok.column)
        while self.peek() is not None and not self.at('}'):
            if self.at('elem_type'):
                ttype.add(self.enum_field('elem_type'))
            elif self.at('shape'):
                ttype.add(self.shape())
            else:
                bad = self.peek()
                raise ParseError(f"Expected elem_type or shape but found {bad.value}", bad.line, bad.column)
        self.expect('}')
        return ttype

    def shape(self):
        tok = self.expect('shape')
        self.expect('{')
        shape = ASTNode(NodeKind.SHAPE, line=tok.line, column=tok.column)
        dims = ASTNode(NodeKind.DIM_LIST, line=tok.line, column=tok.column)
        while self.at('dim'):
            dims.add(self.dim_def())
        shape.add(dims)
        self.expect('}')
        return shape

    def dim_def(self):
        tok = self.expect('dim')
        self.expect('{')
        dim = ASTNode(NodeKind.DIM, line=tok.line, column=tok.column)
        key = self.peek()
        if key is None or key.value not in ('dim_value', 'dim_param'):
            line, column = self.here()
            found = key.value if key is not None else "end of input"
            raise ParseError(f"Expected dim_value or dim_param but found {found}", line, column)
        self.expect(key.value)
        self.expect('=')
        val = self.literal(key.value)
        # classified by the literal's text, not by the key that introduced it
        kind = NodeKind.DIM_VALUE if NUMERIC_RE.fullmatch(val.value) else NodeKind.DIM_PARAM
        dim.add(ASTNode(kind, val.value, val.line, val.column))
        self.expect('}')
        return dim

    # ---- initializers ----
    def tensor_def(self):
        line, column = self.here()
        tensor = ASTNode(NodeKind.TENSOR, line=line, column=column)
        tensor.add(self.field('name'))
        tensor.add(self.enum_field('data_type'))
        tok = self.expect('dims')
        self.expect('=')
        dims = ASTNode(NodeKind.DIMS, line=tok.line, column=tok.column)
        while self.peek() is not None and self.peek().type == 'INTEGER':
            val = self.peek()
            dims.add(ASTNode(NodeKind.DIM_VALUE, val.value, val.line, val.column))
            self.pos += 1
        tensor.add(dims)
        if self.at('raw_data'):
            tensor.add(self.field('raw_data'))
        return tensor


def parse(tokens):
    return Parser(tokens).parse()

# =====================================================
# SEMANTIC ANALYZER + TYPE PROPAGATION
# =====================================================
TensorEntry = namedtuple('TensorEntry', ['name', 'data_type', 'line', 'column'])
NodeEntry = namedtuple('NodeEntry', ['name', 'op_type', 'line', 'column'])
# output is either INPUT0 (copy the common input type) or a concrete type
TypeRule = namedtuple('TypeRule', ['allowed', 'output'])

INPUT0 = 'INPUT0'
NUMERIC = ('FLOAT', 'INT')

DEFAULT_TYPE_RULES = {
    'ADD': TypeRule(NUMERIC, INPUT0),
    'SUB': TypeRule(NUMERIC, INPUT0),
    'MUL': TypeRule(NUMERIC, INPUT0),
    'DIV': TypeRule(NUMERIC, INPUT0),
    'MATMUL': TypeRule(NUMERIC, INPUT0),
    'GEMM': TypeRule(NUMERIC, INPUT0),
    'RESHAPE': TypeRule(NUMERIC, INPUT0),
    'TRANSPOSE': TypeRule(NUMERIC, INPUT0),
    'FLATTEN': TypeRule(NUMERIC, INPUT0),
    'CONCAT': TypeRule(('FLOAT', 'INT', 'STRING', 'BOOL'), INPUT0),
    'RELU': TypeRule(NUMERIC, INPUT0),
    'SIGMOID': TypeRule(('FLOAT',), INPUT0),
    'TANH': TypeRule(('FLOAT',), INPUT0),
    'SOFTMAX': TypeRule(('FLOAT',), INPUT0),
    'CONV': TypeRule(('FLOAT',), 'FLOAT'),
    'MAXPOOL': TypeRule(('FLOAT',), 'FLOAT'),
    'AVERAGEPOOL': TypeRule(('FLOAT',), 'FLOAT'),
    'BATCHNORMALIZATION': TypeRule(('FLOAT',), 'FLOAT'),
    'EQUAL': TypeRule(NUMERIC, 'BOOL'),
    'GREATER': TypeRule(NUMERIC, 'BOOL'),
    'LESS': TypeRule(NUMERIC, 'BOOL'),
}


class SemanticError(namedtuple('SemanticError', ['message', 'line', 'column'])):
    __slots__ = ()

    def __str__(self):
        return format_diagnostic(self.line, self.column, self.message)


class SemanticErrorException(CompileError):
    phase = "Semantic"

    def __init__(self, errors):
        super().__init__(f"{len(errors)} semantic error(s)")
        self.errors = list(errors)

    def __str__(self):
        return "\n".join(str(e) for e in self.errors)


def port_names(node, list_kind, arr_kind):
    names = []
    for port in node.children:
        if port.kind is arr_kind:
            names.extend(unquote(item.value) for item in port.children_of(NodeKind.ITEM))
        elif port.kind is list_kind:
            names.extend(unquote(info.value_of(NodeKind.NAME))
                         for info in port.children_of(NodeKind.VALUE_INFO))
    return names


def node_inputs(node):
    return port_names(node, NodeKind.INPUT_LIST, NodeKind.INPUT_ARR)


def node_outputs(node):
    return port_names(node, NodeKind.OUTPUT_LIST, NodeKind.OUTPUT_ARR)


def elem_type_of(value_info):
    ttype = value_info.child(NodeKind.TENSOR_TYPE)
    if ttype is None:
        return None
    elem = ttype.value_of(NodeKind.ELEM_TYPE)
    return elem.upper() if elem else None


class AnalysisContext:
    """Tables for one analysis run. Created per call, never shared."""

    def __init__(self):
        self.tensors = {}   # name -> TensorEntry
        self.nodes = {}     # name -> NodeEntry
        self.outputs = {}   # node-declared output names, insertion ordered
        self.errors = []

    def error(self, message, line=-1, column=-1):
        self.errors.append(SemanticError(message, line, column))


class AnalysisResult:
    def __init__(self, context):
        self.errors = list(context.errors)
        self.tensors = dict(context.tensors)
        self.nodes = dict(context.nodes)
        self.outputs = list(context.outputs)

    @property
    def ok(self):
        return not self.errors

    def raise_for_errors(self):
        if self.errors:
            raise SemanticErrorException(self.errors)


class SemanticAnalyzer:
    def __init__(self, type_rules=None):
        if type_rules is None:
            type_rules = DEFAULT_TYPE_RULES
        self.type_rules = {op.upper(): rule for op, rule in type_rules.items()}

    def analyze(self, ast):
        ctx = AnalysisContext()
        self.collect_definitions(ast, ctx)
        self.validate_references(ast, ctx)
        self.check_consistency(ctx)
        logger.debug("semantic analysis: %d tensors, %d nodes, %d errors",
                     len(ctx.tensors), len(ctx.nodes), len(ctx.errors))
        return AnalysisResult(ctx)

    # ---- pass 1: definitions ----
    def collect_definitions(self, node, ctx):
        if node.kind is NodeKind.TENSOR:
            name = unquote(node.value_of(NodeKind.NAME))
            data_type = (node.value_of(NodeKind.DATA_TYPE) or "").upper() or None
            self.define_tensor(ctx, name, data_type, node, "tensor")
        elif node.kind is NodeKind.NODE:
            name = unquote(node.value_of(NodeKind.NAME))
            op_type = unquote(node.value_of(NodeKind.OP_TYPE)).upper()
            if name in ctx.nodes:
                ctx.error(f"Duplicate node name: {name}", node.line, node.column)
            ctx.nodes[name] = NodeEntry(name, op_type, node.line, node.column)
        elif node.kind in (NodeKind.INPUT_LIST, NodeKind.OUTPUT_LIST):
            for info in node.children_of(NodeKind.VALUE_INFO):
                name = unquote(info.value_of(NodeKind.NAME))
                self.define_tensor(ctx, name, elem_type_of(info), info, "IO port")
        else:
            for c in node.children:
                self.collect_definitions(c, ctx)

    def define_tensor(self, ctx, name, data_type, node, what):
        # last definition wins, the duplicate is still reported
        if name in ctx.tensors:
            ctx.error(f"Duplicate {what} name: {name}", node.line, node.column)
        ctx.tensors[name] = TensorEntry(name, data_type, node.line, node.column)

    # ---- pass 2: references ----
    def validate_references(self, node, ctx):
        if node.kind is NodeKind.NODE:
            self.validate_node(node, ctx)
        else:
            for c in node.children:
                self.validate_references(c, ctx)

    def validate_node(self, node, ctx):
        op_type = unquote(node.value_of(NodeKind.OP_TYPE)).upper()
        outputs = node_outputs(node)

        resolved = []
        for name in node_inputs(node):
            entry = ctx.tensors.get(name)
            if entry is None:
                ctx.error(f"Undefined tensor reference: {name}", node.line, node.column)
            else:
                resolved.append(entry)

        for name in outputs:
            if name in ctx.outputs:
                ctx.error(f"Output tensor conflict: {name}", node.line, node.column)
            ctx.outputs[name] = node

        rule = self.type_rules.get(op_type)
        if rule is not None:
            self.check_types(node, op_type, resolved, outputs, rule, ctx)

    def check_types(self, node, op_type, resolved, outputs, rule, ctx):
        types = [e.data_type for e in resolved if e.data_type]
        first = types[0] if types else None
        if first is not None:
            if any(t != first for t in types[1:]):
                ctx.error(f"Input types of {op_type} are inconsistent", node.line, node.column)
            if first not in rule.allowed:
                ctx.error(f"{op_type} does not support input type: {first}", node.line, node.column)

        out_type = first if rule.output == INPUT0 else rule.output
        # written even when this node raised errors or the type is unknown
        for name in outputs:
            ctx.tensors[name] = TensorEntry(name, out_type, node.line, node.column)

    # ---- pass 3: model consistency ----
    def check_consistency(self, ctx):
        for name in ctx.outputs:
            if name not in ctx.tensors:
                ctx.error(f"Output tensor undefined: {name}")


def analyze(ast, type_rules=None):
    return SemanticAnalyzer(type_rules).analyze(ast)

# =====================================================
# IR (TAC) GENERATION
# =====================================================
def shape_text(dims):
    if not dims:
        return ""
    return "[" + ",".join(dims) + "]"


def value_info_dims(value_info):
    dims = []
    ttype = value_info.child(NodeKind.TENSOR_TYPE)
    if ttype is None:
        return dims
    for shape in ttype.children_of(NodeKind.SHAPE):
        for dim_list in shape.children_of(NodeKind.DIM_LIST):
            for dim in dim_list.children_of(NodeKind.DIM):
                for c in dim.children:
                    if c.kind in (NodeKind.DIM_VALUE, NodeKind.DIM_PARAM):
                        dims.append(unquote(c.value))
    return dims


class CodeGenerator:
    def __init__(self):
        self.reset()

    def reset(self):
        self.tac = []
        self.temp_count = 0
        self.temps = {}    # tensor name -> last bound temporary
        self.shapes = {}   # tensor name -> shape text

    def new_temp(self):
        temp = f"t{self.temp_count}"
        self.temp_count += 1
        return temp

    def bind(self, name, dims):
        temp = self.new_temp()
        self.temps[name] = temp
        self.shapes[name] = shape_text(dims)
        return temp

    def generate(self, ast):
        self.reset()
        self.visit(ast)
        logger.debug("generated %d TAC instructions", len(self.tac))
        return list(self.tac)

    def visit(self, node):
        handler = self.handlers.get(node.kind)
        if handler is None:
            for c in node.children:
                self.visit(c)
        else:
            handler(self, node)

    def gen_model(self, node):
        self.tac.append("; MODEL DEFINITION")
        graph = node.child(NodeKind.GRAPH)
        if graph is not None:
            self.gen_graph(graph)
        # opset imports always follow the graph
        for imports in node.children_of(NodeKind.OPSET_IMPORTS):
            self.visit(imports)

    def gen_graph(self, node):
        body = node.child(NodeKind.GRAPH_BODY)
        name = unquote(body.value_of(NodeKind.NAME)) if body is not None else ""
        self.tac.append(f"; GRAPH: {name or 'unnamed_graph'}")
        if body is None:
            return
        for kind in (NodeKind.INPUT_LIST, NodeKind.INITIALIZER_LIST,
                     NodeKind.NODE_LIST, NodeKind.OUTPUT_LIST):
            for section in body.children_of(kind):
                self.visit(section)

    def gen_input_list(self, node):
        for info in node.children_of(NodeKind.VALUE_INFO):
            name = unquote(info.value_of(NodeKind.NAME))
            data_type = elem_type_of(info)
            if not name or not data_type:
                continue
            dims = value_info_dims(info)
            temp = self.bind(name, dims)
            self.tac.append(f'{temp} = INPUT("{name}", {data_type}, {shape_text(dims)})')

    def gen_initializer_list(self, node):
        for tensor in node.children_of(NodeKind.TENSOR):
            self.gen_tensor(tensor)

    def gen_tensor(self, node):
        name = unquote(node.value_of(NodeKind.NAME))
        if not name:
            return
        data_type = (node.value_of(NodeKind.DATA_TYPE) or "").upper()
        dims_node = node.child(NodeKind.DIMS)
        dims = [unquote(d.value) for d in dims_node.children_of(NodeKind.DIM_VALUE)] if dims_node else []
        raw = unquote(node.value_of(NodeKind.RAW_DATA))
        temp = self.bind(name, dims)
        self.tac.append(f'{temp} = INITIALIZER("{name}", {data_type}, {shape_text(dims)}, "{raw}")')

    def gen_node(self, node):
        op_type = unquote(node.value_of(NodeKind.OP_TYPE)).upper()
        if not op_type:
            return
        node_name = unquote(node.value_of(NodeKind.NAME))

        # unknown names (forward refs, constants) pass through as written
        args = [self.temps.get(name, name) for name in node_inputs(node)]
        attrs = {}
        for attr_list in node.children_of(NodeKind.ATTRIBUTE_LIST):
            for attr in attr_list.children_of(NodeKind.ATTRIBUTE):
                key = unquote(attr.value_of(NodeKind.NAME))
                value = unquote(attr.value_of(NodeKind.ATTR_VALUE))
                if key and value:
                    attrs[key] = value
        args.extend(f"{k}={v}" for k, v in attrs.items())

        out_temps = []
        for name in node_outputs(node):
            temp = self.new_temp()
            self.temps[name] = temp
            out_temps.append(temp)

        instr = f"{', '.join(out_temps)} = {op_type}({', '.join(args)})"
        if node_name:
            instr += f" ; {node_name}"
        self.tac.append(instr)

    def gen_output_list(self, node):
        for info in node.children_of(NodeKind.VALUE_INFO):
            name = unquote(info.value_of(NodeKind.NAME))
            if name:
                self.tac.append(f'OUTPUT("{name}", {self.temps.get(name, name)})')

    def gen_opset_import(self, node):
        domain = unquote(node.value_of(NodeKind.DOMAIN))
        version = node.value_of(NodeKind.VERSION, "")
        if domain and version:
            self.tac.append(f"; OPSET {domain} VERSION {version}")

    handlers = {
        NodeKind.MODEL_BODY: gen_model,
        NodeKind.GRAPH: gen_graph,
        NodeKind.INPUT_LIST: gen_input_list,
        NodeKind.INITIALIZER_LIST: gen_initializer_list,
        NodeKind.TENSOR: gen_tensor,
        NodeKind.NODE: gen_node,
        NodeKind.OUTPUT_LIST: gen_output_list,
        NodeKind.OPSET_IMPORT: gen_opset_import,
    }


def generate(ast):
    return CodeGenerator().generate(ast)

# =====================================================
# COMPILER DRIVER
# =====================================================
def compile_source(code, type_rules=None):
    result = {
        'tokens': [],
        'ast': None,
        'diagnostics': [],
        'errors': [],
        'tensors': {},
        'tac': [],
    }

    try:
        tokens = tokenize(code)
    except LexError as e:
        result['errors'] = [str(e)]
        return result
    result['tokens'] = tokens

    parser = Parser(tokens)
    try:
        ast = parser.parse()
    except ParseError as e:
        result['errors'] = [str(e)]
        return result
    finally:
        result['diagnostics'] = [format_diagnostic(d.line, d.column, d.message)
                                 for d in parser.diagnostics]
    result['ast'] = ast

    analysis = SemanticAnalyzer(type_rules).analyze(ast)
    result['tensors'] = analysis.tensors
    if not analysis.ok:
        result['errors'] = [str(err) for err in analysis.errors]
        return result

    result['tac'] = CodeGenerator().generate(ast)
    return result

# =====================================================
# SAMPLE MODEL
# =====================================================
SAMPLE_MODEL = r'''
ModelProto {
    ir_version = 7
    producer_name = "sonnx"
    producer_version = "1.0"
    domain = "ai.sample"
    model_version = 1
    doc_string = "conv + relu"
    graph {
        name = "cnn"
        node {
            op_type = "Conv"
            name = "conv0"
            input = [x, w0]
            output = [c0]
            attribute { name = "kernel_shape" value = 3 }
            op_type = "Relu"
            name = "relu0"
            input = [c0]
            output = [y]
        }
        input {
            name = "x"
            type { tensor_type { elem_type = float shape { dim { dim_param = "N" } dim { dim_value = 3 } } } }
        }
        output {
            name = "y"
            type { tensor_type { elem_type = float } }
        }
        initializer {
            name = "w0"
            data_type = float
            dims = 8 3 3 3
            raw_data = 0a0bb
        }
    }
    opset_import { domain = "ai.onnx" version = 13 }
}
'''


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    if argv:
        with open(argv[0], encoding="utf-8") as f:
            code = f.read()
    else:
        code = SAMPLE_MODEL

    result = compile_source(code)

    print("Lexical analysis results:")
    for tok in result['tokens']:
        print(f"{tok.type}: {tok.value}")

    if result['ast'] is not None:
        print("\nSyntax analysis results (AST):")
        print("\n".join(result['ast'].pretty()))

    if result['diagnostics']:
        print("\nWarnings:")
        for d in result['diagnostics']:
            print(d)

    if result['errors']:
        print("\nErrors:")
        for e in result['errors']:
            print(e)
        return 1

    print("\nCode generation results:")
    for line in result['tac']:
        print(line)
    return 0


if __name__ == '__main__':
    sys.exit(main())
