"""JavaScript / TypeScript extractor built on tree-sitter.

Handles ``.js``/``.jsx``/``.mjs``/``.cjs`` with the JavaScript grammar
(which includes JSX), ``.ts`` with the TypeScript grammar and ``.tsx``
with the TSX grammar.  A tree containing ERROR nodes counts as a parse
failure.
"""

from __future__ import annotations

from pathlib import PurePath

import tree_sitter_javascript
import tree_sitter_typescript
from tree_sitter import Language, Node, Parser

from codegraph.application.extraction.base import EntityCollector, ExtractionResult
from codegraph.config.logging import get_logger
from codegraph.core.exceptions import ExtractionError
from codegraph.domain.entities import EntityRelationship, Parameter
from codegraph.domain.enums import EdgeType, EntityKind
from codegraph.domain.rules import classify_import

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Language → (tree-sitter Language object) lookup
# ---------------------------------------------------------------------------

_GRAMMARS = {
    "javascript": tree_sitter_javascript.language,
    "typescript": tree_sitter_typescript.language_typescript,
    "tsx": tree_sitter_typescript.language_tsx,
}

_EXTENSION_TO_GRAMMAR = {
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".mts": "typescript",
    ".cts": "typescript",
    ".tsx": "tsx",
}

# Cache parsers to avoid repeated construction
_PARSER_CACHE: dict[str, Parser] = {}


def _get_parser(grammar: str) -> Parser:
    parser = _PARSER_CACHE.get(grammar)
    if parser is None:
        parser = Parser(Language(_GRAMMARS[grammar]()))
        _PARSER_CACHE[grammar] = parser
    return parser


_FUNCTION_VALUES = ("arrow_function", "function_expression", "function", "generator_function")
_CLASS_NODES = ("class_declaration", "abstract_class_declaration", "class")
_DECLARATION_LISTS = ("lexical_declaration", "variable_declaration")


class TreeSitterExtractor:
    """Extract entities from JavaScript and TypeScript source."""

    language = "javascript"
    extensions = tuple(_EXTENSION_TO_GRAMMAR)

    def extract(self, content: str, file_path: str) -> ExtractionResult:
        grammar = _EXTENSION_TO_GRAMMAR.get(PurePath(file_path).suffix.lower(), "javascript")
        source = content.encode("utf-8")
        tree = _get_parser(grammar).parse(source)

        if tree.root_node.has_error:
            raise ExtractionError(
                f"PARSE_ERROR: syntax errors in {file_path}",
                {"file_path": file_path, "language": grammar},
            )

        walker = _Walker(file_path, source)
        walker.walk(tree.root_node, exported=False, scope=None)
        walker.collector.mark_exported(walker.export_names)
        return ExtractionResult(
            file_path=file_path,
            language=grammar,
            entities=walker.collector.entities,
        )


class _Walker:
    def __init__(self, file_path: str, source: bytes) -> None:
        self.collector = EntityCollector(file_path)
        self.export_names: set[str] = set()
        self._source = source

    # -- helpers -------------------------------------------------------

    def text(self, node: Node | None) -> str:
        if node is None:
            return ""
        return self._source[node.start_byte:node.end_byte].decode("utf-8", errors="replace")

    @staticmethod
    def line(node: Node) -> int:
        return node.start_point[0] + 1

    def _type_text(self, node: Node | None) -> str | None:
        if node is None:
            return None
        return self.text(node).lstrip(":").strip() or None

    def _string_value(self, node: Node) -> str:
        return self.text(node).strip("'\"`")

    # -- traversal -----------------------------------------------------

    def walk(self, node: Node, exported: bool, scope: str | None) -> None:
        handler = getattr(self, f"_on_{node.type}", None)
        if handler is not None:
            handler(node, exported, scope)
            return
        for child in node.named_children:
            self.walk(child, exported, scope)

    def _walk_children(self, node: Node | None, scope: str | None) -> None:
        if node is None:
            return
        for child in node.named_children:
            self.walk(child, False, scope)

    # -- exports -------------------------------------------------------

    def _on_export_statement(self, node: Node, exported: bool, scope: str | None) -> None:
        for child in node.named_children:
            if child.type == "export_clause":
                for spec in child.named_children:
                    if spec.type == "export_specifier":
                        name = spec.child_by_field_name("name")
                        if name is not None:
                            self.export_names.add(self.text(name))
            else:
                self.walk(child, True, scope)

    # -- declarations --------------------------------------------------

    def _parameters(self, params: Node | None) -> list[Parameter]:
        if params is None:
            return []
        if params.type == "identifier":
            return [Parameter(name=self.text(params))]
        result: list[Parameter] = []
        for child in params.named_children:
            if child.type in ("required_parameter", "optional_parameter"):
                pattern = child.child_by_field_name("pattern")
                type_node = child.child_by_field_name("type")
                result.append(Parameter(
                    name=self.text(pattern) if pattern is not None else self.text(child),
                    type=self._type_text(type_node),
                ))
            elif child.type == "assignment_pattern":
                result.append(Parameter(name=self.text(child.child_by_field_name("left"))))
            elif child.type != "comment":
                result.append(Parameter(name=self.text(child)))
        return result

    def _add_function(
        self,
        name: str,
        fn: Node,
        anchor: Node,
        exported: bool,
        scope: str | None,
    ) -> None:
        params = fn.child_by_field_name("parameters") or fn.child_by_field_name("parameter")
        entity = self.collector.add(
            EntityKind.FUNCTION.value,
            name,
            self.line(anchor),
            is_exported=exported,
            parameters=self._parameters(params),
            return_type=self._type_text(fn.child_by_field_name("return_type")),
            scope=scope,
        )
        inner = f"{scope}.{name}" if scope else name
        self.collector.register_scope(inner, entity)
        self._walk_children(fn.child_by_field_name("body"), inner)

    def _on_function_declaration(self, node: Node, exported: bool, scope: str | None) -> None:
        name = self.text(node.child_by_field_name("name")) or "default"
        self._add_function(name, node, node, exported, scope)

    _on_generator_function_declaration = _on_function_declaration

    def _on_lexical_declaration(self, node: Node, exported: bool, scope: str | None) -> None:
        for declarator in node.named_children:
            if declarator.type != "variable_declarator":
                continue
            name_node = declarator.child_by_field_name("name")
            value = declarator.child_by_field_name("value")
            name = self.text(name_node)
            if value is not None and value.type in _FUNCTION_VALUES:
                self._add_function(name, value, declarator, exported, scope)
                continue
            if scope is None:
                self.collector.add(
                    EntityKind.VARIABLE.value,
                    name,
                    self.line(declarator),
                    is_exported=exported,
                    initial_value=self._initial_value(value),
                    return_type=self._type_text(declarator.child_by_field_name("type")),
                )
            if value is not None:
                self.walk(value, False, scope)

    _on_variable_declaration = _on_lexical_declaration

    def _initial_value(self, value: Node | None) -> str | None:
        if value is None:
            return None
        if value.type == "object":
            return "(object)"
        if value.type == "array":
            return "(array)"
        if value.type in ("string", "number", "true", "false", "null", "template_string"):
            return self.text(value)[:80]
        if value.type in ("call_expression", "new_expression", "await_expression"):
            return "(call)"
        return "(expression)"

    def _on_class_declaration(self, node: Node, exported: bool, scope: str | None) -> None:
        name = self.text(node.child_by_field_name("name")) or "default"
        extends, implements = self._heritage(node)
        relationships = [EntityRelationship(type=EdgeType.EXTENDS.value, target=t) for t in extends]
        relationships += [
            EntityRelationship(type=EdgeType.IMPLEMENTS.value, target=t) for t in implements
        ]
        entity = self.collector.add(
            EntityKind.CLASS.value,
            name,
            self.line(node),
            is_exported=exported,
            bases=extends + implements,
            scope=scope,
            relationships=relationships,
        )
        inner = f"{scope}.{name}" if scope else name
        self.collector.register_scope(inner, entity)
        body = node.child_by_field_name("body")
        if body is None:
            return
        for member in body.named_children:
            if member.type == "method_definition":
                method = self.text(member.child_by_field_name("name"))
                self.collector.register_scope(f"{inner}.{method}", entity)
                self._walk_children(member.child_by_field_name("body"), f"{inner}.{method}")
            else:
                self._walk_children(member, inner)

    _on_abstract_class_declaration = _on_class_declaration
    _on_class = _on_class_declaration

    def _heritage(self, node: Node) -> tuple[list[str], list[str]]:
        extends: list[str] = []
        implements: list[str] = []
        for child in node.named_children:
            if child.type != "class_heritage":
                continue
            for clause in child.named_children:
                if clause.type == "extends_clause":
                    value = clause.child_by_field_name("value")
                    targets = [value] if value is not None else clause.named_children
                    extends.extend(self.text(t) for t in targets if t.type != "type_arguments")
                elif clause.type == "implements_clause":
                    implements.extend(self.text(t) for t in clause.named_children)
                else:
                    # JavaScript grammar: class_heritage holds the expression directly
                    extends.append(self.text(clause))
        return extends, implements

    def _on_interface_declaration(self, node: Node, exported: bool, scope: str | None) -> None:
        self.collector.add(
            EntityKind.INTERFACE.value,
            self.text(node.child_by_field_name("name")),
            self.line(node),
            is_exported=exported,
            scope=scope,
        )

    def _on_type_alias_declaration(self, node: Node, exported: bool, scope: str | None) -> None:
        self.collector.add(
            EntityKind.TYPE.value,
            self.text(node.child_by_field_name("name")),
            self.line(node),
            is_exported=exported,
            scope=scope,
        )

    # -- imports -------------------------------------------------------

    def _on_import_statement(self, node: Node, exported: bool, scope: str | None) -> None:
        source_node = node.child_by_field_name("source")
        if source_node is None:
            return
        module = self._string_value(source_node)
        specifiers: list[str] = []
        for clause in node.named_children:
            if clause.type != "import_clause":
                continue
            for part in clause.named_children:
                if part.type == "identifier":
                    specifiers.append(self.text(part))
                elif part.type == "namespace_import":
                    specifiers.extend(self.text(c) for c in part.named_children)
                elif part.type == "named_imports":
                    for spec in part.named_children:
                        if spec.type == "import_specifier":
                            specifiers.append(self.text(spec.child_by_field_name("name")))
        self._add_import(module, specifiers, node)

    def _add_import(self, module: str, specifiers: list[str], node: Node) -> None:
        self.collector.add(
            EntityKind.PACKAGE.value,
            module,
            self.line(node),
            category=classify_import(module).value,
            source=module,
            specifiers=specifiers,
            relationships=[EntityRelationship(type=EdgeType.IMPORTS.value, target=module)],
        )

    # -- calls ---------------------------------------------------------

    def _on_call_expression(self, node: Node, exported: bool, scope: str | None) -> None:
        fn = node.child_by_field_name("function")
        args = node.child_by_field_name("arguments")
        if fn is not None and fn.type in ("identifier", "member_expression"):
            callee = self.text(fn)
            if callee == "require" and args is not None:
                strings = [a for a in args.named_children if a.type == "string"]
                if strings:
                    self._add_import(self._string_value(strings[0]), [], node)
            else:
                self.collector.add(EntityKind.CALL.value, callee, self.line(node), scope=scope)
                self.collector.relate(scope, EdgeType.CALLS.value, callee)
        if fn is not None and fn.type not in ("identifier", "member_expression"):
            self.walk(fn, False, scope)
        self._walk_children(args, scope)

    # -- JSX -----------------------------------------------------------

    def _on_jsx_element(self, node: Node, exported: bool, scope: str | None) -> None:
        opening = node.child_by_field_name("open_tag")
        if opening is not None:
            self._add_component(opening, scope)
        for child in node.named_children:
            if child is not opening and child.type not in ("jsx_opening_element", "jsx_closing_element"):
                self.walk(child, False, scope)

    def _on_jsx_self_closing_element(self, node: Node, exported: bool, scope: str | None) -> None:
        self._add_component(node, scope)

    def _add_component(self, tag: Node, scope: str | None) -> None:
        name = self.text(tag.child_by_field_name("name"))
        props: list[str] = []
        for child in tag.named_children:
            if child.type == "jsx_attribute" and child.named_children:
                props.append(self.text(child.named_children[0]))
            elif child.type == "jsx_expression":
                # attribute values can hold nested JSX or calls
                self.walk(child, False, scope)
        # Intrinsic elements (div, span) are not components.
        if not name or not name[0].isupper():
            return
        self.collector.add(
            EntityKind.COMPONENT.value,
            name,
            self.line(tag),
            category="jsx",
            props=props,
            scope=scope,
        )
        self.collector.relate(scope, EdgeType.USES.value, name)
