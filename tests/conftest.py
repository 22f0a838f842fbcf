"""
Pytest configuration and fixtures for the simplify test suite.

This module provides reusable fixtures for:
- A throwaway host project (content pages, variant/model configs, rules)
- Settings loaded for that project
- Sample variant and page objects for unit tests
"""

import json
import sys
from pathlib import Path

import pytest
import yaml

# Ensure project root is on sys.path to import simplify.* modules
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from simplify.config import StoragePaths, get_config  # noqa: E402
from simplify.host import Page  # noqa: E402
from simplify.models import VariantConfig  # noqa: E402

PAGE_ID = "blog/post-1"
PAGE_UUID = "page://abc123"
VARIANT = "de-x-ls"

VARIANT_DOC = {
    "language_code": VARIANT,
    "source_language": "de",
    "provider": "openai/gpt-4o",
    "ai_system_prompt": "Rewrite in plain language.",
    "temperature": 0.3,
    "category_prompts": {
        "default": "Keep sentences short.",
        "structured": "Return valid JSON only.",
    },
    "field_type_instructions": {
        "text": {"instruction": "Simplify this text.", "category": "default"},
        "textarea": {"instruction": "Simplify this paragraph.", "category": "default"},
        "blocks": {"instruction": "Simplify the blocks.", "category": "structured"},
    },
    "opt_out_templates": ["legal"],
    "opt_out_fields": ["seo_*"],
    "opt_out_fieldtypes": [],
    "pages": [{"uuid": PAGE_UUID, "mode": "auto"}],
}

MODEL_DOC = {
    "provider_type": "openai",
    "model": "gpt-4o",
    "pricing": {"input": 2.5, "output": 10.0, "per_tokens": 1000000},
    "supports_temperature": True,
    "output_token_limit": 4096,
}

PAGE_META = {
    "uuid": PAGE_UUID,
    "title": "Post 1",
    "template": "article",
    "fields": {
        "headline": "text",
        "text": "textarea",
        "blocks": "blocks",
        "seo_title": "text",
    },
}

SOURCE_CONTENT = {
    "title": "Post 1",
    "headline": "Hello world",
    "text": "Write to info@example.org for details.",
    "blocks": '[{"type": "text", "content": "Block body"}]',
    "seo_title": "Search title",
}


def write_json(path: Path, payload) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")


def write_page(content_dir: Path, page_id: str, meta: dict, fields: dict, translations=None) -> None:
    page_dir = content_dir / page_id
    page_dir.mkdir(parents=True, exist_ok=True)
    (page_dir / "page.yml").write_text(yaml.safe_dump(meta), encoding="utf-8")
    write_json(page_dir / "content.json", fields)
    for language, values in (translations or {}).items():
        write_json(page_dir / f"content.{language}.json", values)


@pytest.fixture
def project(tmp_path, monkeypatch):
    """A minimal host project with one page, one variant and one model config."""
    for env_var in ("OPENAI_API_KEY", "ANTHROPIC_API_KEY", "GEMINI_API_KEY",
                    "MISTRAL_API_KEY", "SIMPLIFY_DISPATCH_MODE", "SIMPLIFY_LOG_LEVEL",
                    "SIMPLIFY_ROOT"):
        monkeypatch.delenv(env_var, raising=False)

    root = tmp_path / "site"
    (root / "simplify.yaml").parent.mkdir(parents=True, exist_ok=True)
    (root / "simplify.yaml").write_text(
        yaml.safe_dump({
            "providers": {"openai": {"api_key": "sk-test"}},
            "worker": {"dispatch_mode": "inline"},
        }),
        encoding="utf-8",
    )
    config_dir = root / "config" / "simplify"
    write_json(config_dir / f"{VARIANT}.json", VARIANT_DOC)
    write_json(config_dir / "de.json", {"project_prompt": "Audience: new readers."})
    write_json(config_dir / "openai" / "gpt-4o.json", MODEL_DOC)
    for field_type in ("text", "textarea", "blocks"):
        write_json(root / "rules" / "fieldtypes" / f"{field_type}.json", {"type": field_type})
    write_page(root / "content", PAGE_ID, PAGE_META, SOURCE_CONTENT)
    return root


@pytest.fixture
def settings(project):
    return get_config(project)


@pytest.fixture
def paths(settings):
    return StoragePaths.from_config(settings)


@pytest.fixture
def variant():
    return VariantConfig.model_validate(json.loads(json.dumps(VARIANT_DOC)))


@pytest.fixture
def page():
    return Page(
        id=PAGE_ID,
        uuid=PAGE_UUID,
        title="Post 1",
        template="article",
        field_types=dict(PAGE_META["fields"]),
    )
