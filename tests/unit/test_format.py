"""
Unit tests for declarative schema documents.

Tests cover:
- Mapping object types to tables and fields to columns
- Reference fields to foreign key columns
- Generated configuration keeping declared names
- Validation problems
- YAML and JSON loading
"""

import json

import pytest

from sqlgraph.errors import ConfigurationError
from sqlgraph.schema.format import (
    build_document,
    load_schema_document,
    parse_json,
    parse_yaml,
    validate_document,
)
from sqlgraph.schema.model import ForeignKeyField, build_schema

BLOG_YAML = """
name: blog
types:
  User:
    fields:
      id: ID!
      email: String!
      firstName: String
    unique:
      - [email]
  BlogPost:
    pluralName: entries
    fields:
      id: ID!
      author:
        type: User!
        relatedName: posts
      title:
        type: String!
        size: 200
      published:
        type: Boolean
        default: false
  Tag:
    fields:
      id: ID!
      label: String!
  PostTag:
    primaryKey: [post, tag]
    fields:
      post: BlogPost!
      tag: Tag!
"""


class TestBuildDocument:
    """Tests for build_document."""

    @pytest.fixture
    def doc(self):
        return parse_yaml(BLOG_YAML)

    def test_tables(self, doc):
        """Types become snake_case tables in order."""
        assert [t.name for t in doc.info.tables] == ["user", "blog_post", "tag", "post_tag"]
        assert doc.info.name == "blog"

    def test_columns(self, doc):
        """Scalar fields become columns."""
        user = doc.info.table("user")
        assert [c.name for c in user.columns] == ["id", "email", "first_name"]
        assert user.column("id").auto_increment is True
        assert user.column("id").nullable is False
        assert user.column("email").nullable is False
        assert user.column("first_name").nullable is True

        post = doc.info.table("blog_post")
        assert post.column("title").size == 200
        assert post.column("published").type == "boolean"
        assert post.column("published").default is False

    def test_reference_columns(self, doc):
        """Reference fields become <name>_id foreign keys."""
        post = doc.info.table("blog_post")
        author = post.column("author_id")
        assert author.type == "integer"
        assert author.nullable is False
        fk = [c for c in post.constraints if c.references is not None][0]
        assert fk.columns == ("author_id",)
        assert fk.references.table == "user"
        assert fk.references.columns == ("id",)

    def test_unique_and_primary_keys(self, doc):
        """unique and primaryKey blocks become constraints."""
        user = doc.info.table("user")
        assert [c.columns for c in user.constraints if c.unique] == [("email",)]
        junction = doc.info.table("post_tag")
        primary = [c for c in junction.constraints if c.primary_key][0]
        assert primary.columns == ("post_id", "tag_id")

    def test_resolved_schema_keeps_names(self, doc):
        """The generated configuration keeps declared names."""
        schema = build_schema(doc.info, doc.config)
        post = schema.model("BlogPost")
        assert post.plural_name == "entries"
        assert isinstance(post.field("author"), ForeignKeyField)
        assert schema.model("User").field("posts").target is post
        assert schema.model("User").field("firstName") is not None
        assert schema.model("BlogPost").field("tags").through_field is not None

    def test_custom_table_and_column(self):
        """table and column override derived names."""
        doc = build_document(
            {
                "types": {
                    "Person": {
                        "table": "people",
                        "fields": {"id": "ID!", "fullName": {"type": "String", "column": "name"}},
                    }
                }
            }
        )
        assert doc.info.tables[0].name == "people"
        schema = build_schema(doc.info, doc.config)
        model = schema.model("Person")
        assert model is schema.model("people")
        assert model.field("fullName").column.name == "name"


class TestValidateDocument:
    """Tests for validate_document."""

    def test_valid(self):
        """The blog document has no problems."""
        import yaml

        assert validate_document(yaml.safe_load(BLOG_YAML)) == []

    def test_not_a_mapping(self):
        """Documents are mappings."""
        assert validate_document([]) == ["Schema document must be a mapping"]

    def test_requires_types(self):
        """Documents declare types."""
        assert validate_document({}) == ["Schema document requires a non-empty 'types' mapping"]

    def test_problems(self):
        """Every problem is reported."""
        errors = validate_document(
            {
                "types": {
                    "A": {"fields": {"name": "String"}},
                    "B": {"fields": {"id": "ID!", "x": "Foo"}, "unique": [["y"]]},
                }
            }
        )
        assert "A: no ID field and no primaryKey" in errors
        assert "B.x: unknown type 'Foo'" in errors
        assert "B: key names unknown field 'y'" in errors

    def test_bad_through_field(self):
        """throughField must name a reference field."""
        errors = validate_document(
            {
                "types": {
                    "A": {"fields": {"id": "ID!"}},
                    "J": {
                        "primaryKey": ["a"],
                        "fields": {"a": {"type": "A!", "throughField": "note"}, "note": "String"},
                    },
                }
            }
        )
        assert errors == ["J.a: throughField 'note' is not a reference"]

    def test_build_raises_with_problems(self):
        """build_document refuses invalid documents."""
        with pytest.raises(ConfigurationError) as exc_info:
            build_document({"types": {"A": {"fields": {"name": "String"}}}})
        assert exc_info.value.errors == ["A: no ID field and no primaryKey"]


class TestLoading:
    """Tests for parsing and loading documents."""

    def test_invalid_yaml(self):
        """YAML syntax errors are configuration errors."""
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            parse_yaml("types: [")

    def test_invalid_json(self):
        """JSON syntax errors are configuration errors."""
        with pytest.raises(ConfigurationError, match="Invalid JSON"):
            parse_json("{")

    def test_load_json_file(self, tmp_path):
        """.json files are parsed as JSON."""
        path = tmp_path / "schema.json"
        path.write_text(json.dumps({"types": {"Tag": {"fields": {"id": "ID!", "label": "String"}}}}))
        doc = load_schema_document(path)
        assert doc.info.tables[0].name == "tag"

    def test_load_yaml_file(self, tmp_path):
        """Other files are parsed as YAML."""
        path = tmp_path / "schema.yml"
        path.write_text(BLOG_YAML)
        doc = load_schema_document(path)
        assert len(doc.info.tables) == 4
