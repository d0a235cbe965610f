"""Python extractor built on the standard-library ``ast`` module.

Emits functions, classes, module-level variables, imports and calls.
A top-level name is exported when it is listed in ``__all__`` or, when
the module has no ``__all__``, when it does not start with an underscore.
"""

from __future__ import annotations

import ast

from codegraph.application.extraction.base import EntityCollector, ExtractionResult
from codegraph.core.exceptions import ExtractionError
from codegraph.domain.entities import EntityRelationship, Parameter
from codegraph.domain.enums import EdgeType, EntityKind
from codegraph.domain.rules import classify_import


class PythonExtractor:
    """Extract entities from Python source."""

    language = "python"
    extensions = (".py", ".pyi")

    def extract(self, content: str, file_path: str) -> ExtractionResult:
        try:
            tree = ast.parse(content, filename=file_path)
        except (SyntaxError, ValueError) as e:
            raise ExtractionError(f"PARSE_ERROR: {e}", {"file_path": file_path}) from e

        visitor = _PythonVisitor(file_path, _module_all(tree))
        visitor.visit(tree)
        return ExtractionResult(
            file_path=file_path,
            language=self.language,
            entities=visitor.collector.entities,
        )


def _module_all(tree: ast.Module) -> set[str] | None:
    for stmt in tree.body:
        if isinstance(stmt, ast.Assign):
            targets = [t.id for t in stmt.targets if isinstance(t, ast.Name)]
            if "__all__" in targets and isinstance(stmt.value, (ast.List, ast.Tuple)):
                return {
                    elt.value for elt in stmt.value.elts
                    if isinstance(elt, ast.Constant) and isinstance(elt.value, str)
                }
    return None


def _unparse(node: ast.AST | None) -> str | None:
    if node is None:
        return None
    return ast.unparse(node)


def _dotted_name(node: ast.AST) -> str | None:
    """``a.b.c`` for Name/Attribute chains, None for anything else."""
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        base = _dotted_name(node.value)
        return f"{base}.{node.attr}" if base else None
    return None


def _initial_value(node: ast.AST | None) -> str | None:
    if node is None:
        return None
    if isinstance(node, ast.Dict):
        return "(object)"
    if isinstance(node, (ast.List, ast.Tuple, ast.Set)):
        return "(array)"
    if isinstance(node, ast.Constant):
        return repr(node.value)[:80]
    if isinstance(node, ast.Call):
        return "(call)"
    if isinstance(node, ast.Lambda):
        return "(function)"
    return "(expression)"


class _PythonVisitor(ast.NodeVisitor):
    def __init__(self, file_path: str, exports: set[str] | None) -> None:
        self.collector = EntityCollector(file_path)
        self._exports = exports
        self._scopes: list[str] = []

    # -- helpers -------------------------------------------------------

    @property
    def _scope(self) -> str | None:
        return ".".join(self._scopes) if self._scopes else None

    def _is_exported(self, name: str) -> bool:
        if self._scopes:
            return False
        if self._exports is not None:
            return name in self._exports
        return not name.startswith("_")

    # -- declarations --------------------------------------------------

    def _visit_function(self, node: ast.FunctionDef | ast.AsyncFunctionDef) -> None:
        args = node.args
        params = [
            Parameter(name=a.arg, type=_unparse(a.annotation))
            for a in (*args.posonlyargs, *args.args, *args.kwonlyargs)
            if a.arg not in ("self", "cls")
        ]
        if args.vararg is not None:
            params.append(Parameter(name=f"*{args.vararg.arg}", type=_unparse(args.vararg.annotation)))
        if args.kwarg is not None:
            params.append(Parameter(name=f"**{args.kwarg.arg}", type=_unparse(args.kwarg.annotation)))

        entity = self.collector.add(
            EntityKind.FUNCTION.value,
            node.name,
            node.lineno,
            is_exported=self._is_exported(node.name),
            parameters=params,
            return_type=_unparse(node.returns),
            scope=self._scope,
            docstring=ast.get_docstring(node),
        )
        self._scopes.append(node.name)
        self.collector.register_scope(self._scope, entity)
        self.generic_visit(node)
        self._scopes.pop()

    visit_FunctionDef = _visit_function
    visit_AsyncFunctionDef = _visit_function

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        bases = [b for b in (_dotted_name(base) for base in node.bases) if b and b != "object"]
        entity = self.collector.add(
            EntityKind.CLASS.value,
            node.name,
            node.lineno,
            is_exported=self._is_exported(node.name),
            bases=bases,
            scope=self._scope,
            docstring=ast.get_docstring(node),
            relationships=[
                EntityRelationship(type=EdgeType.EXTENDS.value, target=b) for b in bases
            ],
        )
        self._scopes.append(node.name)
        self.collector.register_scope(self._scope, entity)
        self.generic_visit(node)
        self._scopes.pop()

    def visit_Assign(self, node: ast.Assign) -> None:
        if not self._scopes:
            for target in node.targets:
                if isinstance(target, ast.Name) and target.id != "__all__":
                    self._add_variable(target.id, node.lineno, node.value, None)
        self.generic_visit(node)

    def visit_AnnAssign(self, node: ast.AnnAssign) -> None:
        if not self._scopes and isinstance(node.target, ast.Name):
            self._add_variable(node.target.id, node.lineno, node.value, _unparse(node.annotation))
        self.generic_visit(node)

    def _add_variable(self, name: str, line: int, value: ast.AST | None, annotation: str | None) -> None:
        self.collector.add(
            EntityKind.VARIABLE.value,
            name,
            line,
            is_exported=self._is_exported(name),
            initial_value=_initial_value(value),
            return_type=annotation,
        )

    # -- imports -------------------------------------------------------

    def visit_Import(self, node: ast.Import) -> None:
        for alias in node.names:
            self._add_import(alias.name, [alias.asname] if alias.asname else [], node.lineno)

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:
        module = "." * node.level + (node.module or "")
        specifiers = [a.name for a in node.names]
        self._add_import(module, specifiers, node.lineno)

    def _add_import(self, module: str, specifiers: list[str], line: int) -> None:
        self.collector.add(
            EntityKind.PACKAGE.value,
            module,
            line,
            category=classify_import(module).value,
            source=module,
            specifiers=specifiers,
            scope=self._scope,
            relationships=[EntityRelationship(type=EdgeType.IMPORTS.value, target=module)],
        )

    # -- calls ---------------------------------------------------------

    def visit_Call(self, node: ast.Call) -> None:
        callee = _dotted_name(node.func)
        if callee:
            self.collector.add(
                EntityKind.CALL.value,
                callee,
                node.lineno,
                scope=self._scope,
            )
            self.collector.relate(self._scope, EdgeType.CALLS.value, callee)
        self.generic_visit(node)
