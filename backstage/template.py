"""Compiled chat templates.

Thin wrapper around a sandboxed Jinja2 environment. Templates come
from channel moderators, so rendering runs in the sandbox and any
variable the invocation context does not supply is an error rather
than an empty string.
"""

from typing import Any, Dict, FrozenSet

import jinja2
from jinja2 import meta
from jinja2.sandbox import SandboxedEnvironment

from .exceptions import CompileError, RenderError

_env = SandboxedEnvironment(
    undefined=jinja2.StrictUndefined,
    autoescape=False,
    keep_trailing_newline=True,
)


class Template:
    """A template compiled from its source text.

    Construct with Template.compile(); instances are immutable.
    """

    __slots__ = ("_source", "_compiled", "_vars")

    def __init__(self, source: str, compiled: jinja2.Template, variables: FrozenSet[str]):
        self._source = source
        self._compiled = compiled
        self._vars = variables

    @classmethod
    def compile(cls, source: str) -> "Template":
        """Compile template source text.

        Raises:
            CompileError: The source is not a valid template.
        """
        try:
            ast = _env.parse(source)
            compiled = _env.from_string(ast)
        except jinja2.TemplateSyntaxError as e:
            raise CompileError(
                f"Bad template: {e.message} (line {e.lineno})",
                line=e.lineno,
            ) from e
        variables = frozenset(meta.find_undeclared_variables(ast))
        return cls(source, compiled, variables)

    @property
    def source(self) -> str:
        return self._source

    def referenced_variables(self) -> FrozenSet[str]:
        """Names of the context variables the template reads."""
        return self._vars

    def render(self, context: Dict[str, Any]) -> str:
        """Render against an invocation context.

        Raises:
            RenderError: The template needs a variable the context lacks,
                or attempted something the sandbox forbids.
        """
        try:
            return self._compiled.render(context)
        except jinja2.TemplateError as e:
            # UndefinedError (missing variable) and SecurityError (sandbox)
            raise RenderError(f"Template error: {e.message}") from e
        except (TypeError, ValueError, ArithmeticError) as e:
            raise RenderError(f"Template error: {e}") from e

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Template):
            return NotImplemented
        return self._source == other._source

    def __hash__(self) -> int:
        return hash(self._source)

    def __str__(self) -> str:
        return self._source

    def __repr__(self) -> str:
        return f"Template({self._source!r})"
