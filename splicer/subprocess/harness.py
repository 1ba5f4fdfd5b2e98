"""Source wrappers run inside the external interpreter.

Fragments never reach the interactive prompt as raw source. Each one is
handed, as a single string literal on a single line, to a small function
defined once per session: output mode compiles the whole fragment the way
the prompt compiles one statement, so expression statements still echo,
and value mode silences stdout and writes the value of the final expression
to an artifact file.
"""

from __future__ import annotations

VALUE_FUNCTION = "_splicer_value"
RUN_FUNCTION = "_splicer_run"

VALUE_BOOTSTRAP = '''\
def _splicer_value(source, artifact, pretty=False):
    import ast, contextlib, io, pprint
    tree = ast.parse(source, "<fragment>", "exec")
    tail = None
    if tree.body and isinstance(tree.body[-1], ast.Expr):
        tail = ast.Expression(tree.body.pop().value)
    namespace = globals()
    with contextlib.redirect_stdout(io.StringIO()):
        exec(compile(tree, "<fragment>", "exec"), namespace)
        value = None if tail is None else eval(compile(tail, "<fragment>", "eval"), namespace)
    if pretty:
        text = pprint.pformat(value)
    elif isinstance(value, (list, tuple)) and value and all(isinstance(r, (list, tuple)) for r in value):
        text = "\\n".join("\\t".join(str(c) for c in row) for row in value)
    elif isinstance(value, (list, tuple)):
        text = "\\t".join(str(c) for c in value)
    else:
        text = str(value)
    with open(artifact, "w", encoding="utf-8") as fh:
        fh.write(text)
'''

RUN_BOOTSTRAP = '''\
def _splicer_run(source):
    import ast, traceback
    try:
        tree = ast.parse(source, "<fragment>", "exec")
        code = compile(ast.Interactive(body=tree.body), "<fragment>", "single")
        exec(code, globals())
    except SyntaxError as e:
        traceback.print_exception(type(e), e, None)
    except Exception as e:
        traceback.print_exception(type(e), e, e.__traceback__.tb_next)
'''

# Empty prompts keep the merged transcript free of anything the program did not print
PROMPT_RESET = '__import__("sys").ps1 = __import__("sys").ps2 = ""\n'


def bootstrap_line() -> str:
    """Single line defining the harness functions inside a live session."""
    return f"exec({VALUE_BOOTSTRAP + RUN_BOOTSTRAP + PROMPT_RESET!r})"


def run_call(source: str) -> str:
    """Single line running ``source`` with interactive echo of expressions."""
    return f"{RUN_FUNCTION}({source!r})"


def value_call(source: str, artifact: str, pretty: bool = False) -> str:
    """Single line running ``source`` through the value function."""
    return f"{VALUE_FUNCTION}({source!r}, {artifact!r}, {pretty!r})"


def value_script(source: str, artifact: str, pretty: bool = False) -> str:
    """Standalone script for one-shot value capture."""
    return VALUE_BOOTSTRAP + "\n" + value_call(source, artifact, pretty) + "\n"


def join_source(*parts: str | None) -> str:
    """Join non-empty source pieces with newlines."""
    return "\n".join(part for part in parts if part and part.strip())
