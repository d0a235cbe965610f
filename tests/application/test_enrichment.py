"""Tests for static enrichment: filter pipeline, docs, categories, relationships."""

from __future__ import annotations

import pytest

from codegraph.application.enrichment.confidence import static_confidence
from codegraph.application.enrichment.doc_comments import find_doc_comment, parse_docstring, parse_jsdoc
from codegraph.application.enrichment.filter import (
    EntityFilterPipeline,
    StaticEnrichmentFilter,
    merge_sources,
)
from codegraph.application.enrichment.relationships import (
    count_usages,
    declaration_block,
    infer_relationships,
    package_name,
)
from codegraph.application.enrichment.semantic_types import infer_semantic_category
from codegraph.domain.entities import (
    DiscoveredEntity,
    DocComment,
    EntityRelationship,
    ExtractedEntity,
    Parameter,
)
from codegraph.domain.enums import KnownEntityType, SemanticCategory


def _entity(name: str, kind: str = "function", **fields) -> ExtractedEntity:
    fields.setdefault("id", f"code-{kind}-{name}")
    fields.setdefault("file_path", "src/app.ts")
    return ExtractedEntity(name=name, kind=kind, **fields)


class TestEntityFilterPipeline:
    def test_drops_primitives_and_asset_imports(self):
        kept = EntityFilterPipeline().run([
            _entity("string", "type"),
            _entity("./styles.css", "package", source="./styles.css"),
            _entity("render"),
        ])
        assert [e.name for e in kept] == ["render"]

    def test_private_names_penalized(self):
        (entity,) = EntityFilterPipeline().run([_entity("_cache", "variable", confidence=1.0)])
        assert entity.confidence == pytest.approx(0.3)

    def test_dunder_names_not_penalized(self):
        (entity,) = EntityFilterPipeline().run([_entity("__init__", confidence=0.5)])
        assert entity.confidence == pytest.approx(0.5)

    def test_dedup_merges_specifiers_and_boosts(self):
        kept = EntityFilterPipeline().run([
            _entity("react", "package", source="react", specifiers=["useState"], confidence=0.5, id="a"),
            _entity("react", "package", source="react", specifiers=["useEffect"], confidence=0.5, id="b"),
        ])
        assert len(kept) == 1
        assert kept[0].specifiers == ["useState", "useEffect"]
        assert kept[0].category == "external"
        assert kept[0].confidence > 0.5

    def test_export_boost_clamped(self):
        (entity,) = EntityFilterPipeline().run([_entity("render", is_exported=True, confidence=0.95)])
        assert entity.confidence == 1.0

    def test_input_not_mutated(self):
        original = _entity("  spaced   name ", "variable")
        EntityFilterPipeline().run([original])
        assert original.name == "  spaced   name "


class TestDocComments:
    def test_jsdoc_block_before_line(self):
        lines = [
            "/**",
            " * Fetch a user by id.",
            " * @param {string} id - The user id",
            " * @returns {User} the user",
            " * @throws NotFound",
            " * @deprecated use getUserById",
            " */",
            "",
            "function getUser(id) {}",
        ]
        doc = find_doc_comment(lines, 9)
        assert doc.summary == "Fetch a user by id."
        assert [(p.name, p.type, p.description) for p in doc.params] == [("id", "string", "The user id")]
        assert doc.returns == "{User} the user"
        assert doc.throws == ["NotFound"]
        assert doc.deprecated == "use getUserById"

    def test_no_comment(self):
        assert find_doc_comment(["const a = 1;", "function f() {}"], 2) is None

    def test_custom_tags_kept(self):
        doc = parse_jsdoc("/** Widget.\n * @component\n */")
        assert "component" in doc.tags

    def test_google_docstring(self):
        doc = parse_docstring(
            "Log a user in.\n\nArgs:\n    name (str): Login name.\n\nReturns:\n    A session token.\n\n"
            "Raises:\n    AuthError: bad credentials.\n"
        )
        assert doc.summary == "Log a user in."
        assert [(p.name, p.type) for p in doc.params] == [("name", "str")]
        assert doc.returns == "A session token."
        assert doc.throws == ["AuthError: bad credentials."]

    def test_empty_docstring(self):
        assert parse_docstring("   ") is None


class TestSemanticCategory:
    @pytest.mark.parametrize("name,kind,expected", [
        ("useAuth", "function", SemanticCategory.REACT_HOOK),
        ("ThemeProvider", "function", SemanticCategory.REACT_CONTEXT),
        ("handleSubmit", "function", SemanticCategory.API_HANDLER),
        ("UserService", "class", SemanticCategory.SERVICE),
        ("UserRepository", "class", SemanticCategory.REPOSITORY),
        ("dateUtils", "variable", SemanticCategory.UTILITY),
        ("MAX_RETRIES", "variable", SemanticCategory.CONSTANT),
        ("Props", "interface", SemanticCategory.TYPE_DEFINITION),
        ("Invoice", "class", SemanticCategory.ENTITY),
        ("compute", "function", SemanticCategory.UNKNOWN),
    ])
    def test_naming_heuristics(self, name, kind, expected):
        assert infer_semantic_category(_entity(name, kind)) == expected

    def test_doc_tag_wins(self):
        doc = DocComment(tags={"service": ""})
        assert infer_semantic_category(_entity("compute"), doc) == SemanticCategory.SERVICE

    def test_function_returning_jsx_is_component(self):
        source = "function Card(props) {\n  return <div>{props.title}</div>;\n}\n"
        assert infer_semantic_category(_entity("Card"), None, source) == SemanticCategory.REACT_COMPONENT


class TestRelationships:
    SOURCE = [
        "function checkout(cart) {",
        "  const total = sumItems(cart);",
        "  return charge(total);",
        "}",
    ]

    def test_usage_relationships(self):
        checkout = _entity("checkout", line=1)
        others = [checkout, _entity("sumItems", line=10), _entity("charge", line=20)]
        rels = infer_relationships(checkout, others, self.SOURCE)
        calls = {(r.type, r.target) for r in rels}
        assert ("calls", "sumItems") in calls
        assert ("calls", "charge") in calls
        assert all(r.evidence for r in rels)

    def test_import_and_external_package(self):
        pkg = _entity(
            "lodash/fp", "package", source="lodash/fp", category="external", specifiers=["map"]
        )
        rels = infer_relationships(pkg, [pkg, _entity("map", "variable")])
        pairs = {(r.type, r.target) for r in rels}
        assert ("imports", "lodash/fp") in pairs
        assert ("depends_on", "map") in pairs
        assert ("depends_on", "lodash") in pairs

    def test_inheritance(self):
        cls = _entity("Admin", "class", relationships=[EntityRelationship(type="extends", target="User")])
        rels = infer_relationships(cls, [cls])
        assert [(r.type, r.target, r.confidence) for r in rels] == [("extends", "User", 1.0)]

    def test_co_occurrence(self):
        a = _entity("a", "variable", line=1)
        b = _entity("b", "variable", line=3)
        far = _entity("far", "variable", line=40)
        rels = infer_relationships(a, [a, b, far])
        assert [(r.type, r.target) for r in rels] == [("related_to", "b")]

    def test_text_helpers(self):
        assert package_name("@scope/pkg/sub") == "@scope/pkg"
        assert package_name("pkg.sub") == "pkg"
        assert count_usages("foo", "foo(); obj.foo; foobar; foo") == 2
        assert declaration_block(self.SOURCE, 1).endswith("}")
        assert declaration_block(["def f():", "    return 1", "x = 2"], 1) == "def f():\n    return 1"


class TestStaticConfidence:
    def test_evidence_raises_score(self):
        bare = _entity("compute")
        rich = _entity(
            "compute",
            is_exported=True,
            parameters=[Parameter(name="x", type="int")],
        )
        doc = DocComment(description="Computes the running total of an order.")
        low = static_confidence(bare, SemanticCategory.UNKNOWN, None, [])
        high = static_confidence(rich, SemanticCategory.SERVICE, doc, [], usage_count=2)
        assert 0.0 <= low < high <= 1.0
        assert low == pytest.approx(0.25)


class TestStaticEnrichmentFilter:
    def test_enrich_attaches_location_and_doc(self):
        source = "/** Sum two numbers. */\nexport function add(a, b) {\n  return a + b;\n}\nadd(1, 2);\n"
        entity = _entity("add", line=2, is_exported=True)
        (enriched,) = StaticEnrichmentFilter().enrich([entity], source, "src/math.js")
        assert enriched.location.file == "src/math.js"
        assert enriched.location.line == 2
        assert enriched.doc.summary == "Sum two numbers."
        assert enriched.usage_count == 1
        assert 0.0 < enriched.static_confidence <= 1.0


class TestMergeSources:
    def test_dedup_across_sources_keeps_max(self):
        extracted = [_entity("AuthService", "class", confidence=0.6)]
        discovered = [
            DiscoveredEntity(name="authservice", type=KnownEntityType.SERVICE, confidence=0.9),
            DiscoveredEntity(name="Users", type=KnownEntityType.TABLE, confidence=0.7),
        ]
        nodes = merge_sources(extracted, discovered, source_document="auth.ts")
        assert [n.id for n in nodes] == ["entity:authservice", "entity:users"]
        assert nodes[0].confidence == 0.9

    def test_order_independent(self):
        a = DiscoveredEntity(name="Gateway", type=KnownEntityType.SERVICE, confidence=0.4)
        b = DiscoveredEntity(name="gateway", type=KnownEntityType.SERVICE, confidence=0.8)
        first = merge_sources([], [a, b])
        second = merge_sources([], [b, a])
        assert [(n.id, n.confidence) for n in first] == [(n.id, n.confidence) for n in second]
