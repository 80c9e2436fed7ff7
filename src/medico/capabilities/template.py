"""Prompt templates rendered with jinja2.

Templates are checked against the capability's input schema when they are
compiled, so a reference to an undeclared field is a startup error rather than
a per-call one. At render time every declared-but-absent optional field
(nested ones included) is bound to ``None``, or ``[]`` for lists, which keeps
``{% if optional_field %}`` blocks well-defined under ``StrictUndefined``.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import jinja2
from jinja2 import meta, nodes

from medico.capabilities.schema import FieldKind, Schema, string
from medico.errors import TemplateError


def _stringify(value: Any) -> Any:
    """Finalize hook: how interpolated values are turned into prompt text."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, dict)):
        return json.dumps(value, ensure_ascii=False)
    return value


_env = jinja2.Environment(
    undefined=jinja2.StrictUndefined,
    autoescape=False,
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=False,
    finalize=_stringify,
)
_env.filters["json"] = lambda value: json.dumps(value, ensure_ascii=False, indent=2)


@dataclass(frozen=True)
class PromptTemplate:
    """A compiled template bound to the input schema it was checked against."""

    source: str
    schema: Schema
    _template: jinja2.Template

    def render(self, input_value: Mapping[str, Any]) -> str:
        """Render the template with an input value.

        Raises:
            TemplateError: If rendering fails (e.g. attribute access on a value
                of the wrong shape).
        """
        filled, _ = self.schema.fill_missing_optional(input_value)
        context = {name: None for name in self.schema.names}
        context.update(filled)
        try:
            return self._template.render(context).strip()
        except jinja2.TemplateError as e:
            raise TemplateError(f"failed to render prompt: {e}") from e


def _attribute_paths(node: nodes.Node) -> list[tuple[str, ...]]:
    """Collect ``name.attr.attr`` chains rooted at template-level names."""
    chains: list[tuple[str, ...]] = []
    for getattr_node in node.find_all(nodes.Getattr):
        parts: list[str] = []
        current: nodes.Node = getattr_node
        while isinstance(current, nodes.Getattr):
            parts.append(current.attr)
            current = current.node
        if isinstance(current, nodes.Name) and current.ctx == "load":
            parts.append(current.name)
            chains.append(tuple(reversed(parts)))
    return chains


def _check_attribute_path(schema: Schema, chain: tuple[str, ...]) -> str | None:
    root = schema.get(chain[0])
    if root is None:
        # Loop variables and other template-local names
        return None
    current = root
    for attr in chain[1:]:
        # Objects without declared fields are open
        if current.kind is not FieldKind.OBJECT or not current.fields:
            return None
        child = current.get(attr)
        if child is None:
            return ".".join(chain)
        current = child
    return None


def compile_template(source: str, schema: Schema) -> PromptTemplate:
    """Compile and check a template against an input schema.

    Raises:
        TemplateError: On syntax errors or references to undeclared fields.
    """
    try:
        ast = _env.parse(source)
    except jinja2.TemplateSyntaxError as e:
        raise TemplateError(f"template syntax error on line {e.lineno}: {e.message}") from e

    declared = set(schema.names)
    undeclared = sorted(meta.find_undeclared_variables(ast) - declared)
    if undeclared:
        raise TemplateError(
            f"template references undeclared input fields: {', '.join(undeclared)}"
        )

    bad_paths = [
        path
        for chain in _attribute_paths(ast)
        if (path := _check_attribute_path(schema, chain)) is not None
    ]
    if bad_paths:
        raise TemplateError(
            f"template references undeclared nested fields: {', '.join(sorted(set(bad_paths)))}"
        )

    return PromptTemplate(source=source, schema=schema, _template=_env.from_string(source))


def render(
    template: str | PromptTemplate,
    input_value: Mapping[str, Any],
    schema: Schema | None = None,
) -> str:
    """Render a template source (or compiled template) with an input value.

    Without a schema, the input value's own keys are treated as the declared
    fields.
    """
    if isinstance(template, PromptTemplate):
        return template.render(input_value)
    if schema is None:
        schema = Schema.of(*(string(name, required=False) for name in input_value))
    return compile_template(template, schema).render(input_value)
