import logging
import os

from flask import Flask, request, jsonify
from flask_cors import CORS

import sonnx_compiler

logger = logging.getLogger(__name__)

app = Flask(__name__)
CORS(app)  # allow cross-origin requests


def env_flag(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def tensors_to_dict(tensors):
    return {name: {"data_type": entry.data_type, "line": entry.line, "column": entry.column}
            for name, entry in tensors.items()}


def empty_response(errors):
    return {
        "tokens": [],
        "ast": {},
        "diagnostics": [],
        "errors": errors,
        "tensors": {},
        "tac": [],
    }


@app.route("/compile", methods=["POST"])
def compile_code():
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return jsonify(empty_response(["request body must be a JSON object"])), 400
    code = data.get("code", "")
    if not isinstance(code, str):
        return jsonify(empty_response(["'code' must be a string"])), 400
    try:
        result = sonnx_compiler.compile_source(code)

        tokens = [{"type": tok.type, "value": tok.value, "line": tok.line, "column": tok.column}
                  for tok in result['tokens']]
        ast_dict = result['ast'].to_dict() if result['ast'] is not None else {}

        response = {
            "tokens": tokens,
            "ast": ast_dict,
            "diagnostics": result['diagnostics'],
            "errors": result['errors'],
            "tensors": tensors_to_dict(result['tensors']),
            "tac": result['tac'],
        }
        return jsonify(response)
    except Exception as e:
        logger.exception("compile request failed")
        return jsonify(empty_response([f"Unexpected error: {str(e)}"])), 500


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    app.run(host=os.environ.get("SONNX_HOST", "127.0.0.1"),
            port=int(os.environ.get("SONNX_PORT", "5000")),
            debug=env_flag("SONNX_DEBUG"))
