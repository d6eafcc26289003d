import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from plugin_utils import SF_NAMESPACE_URI


def write_file(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding='utf-8')
    return path


def field_xml(full_name: str, field_type: str | None = 'Text', required: bool = False,
              formula: str | None = None) -> str:
    parts = [f'    <fullName>{full_name}</fullName>']
    if formula:
        parts.append(f'    <formula>{formula}</formula>')
    parts.append(f'    <required>{str(required).lower()}</required>')
    if field_type:
        parts.append(f'    <type>{field_type}</type>')
    body = '\n'.join(parts)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        f'<CustomField xmlns="{SF_NAMESPACE_URI}">\n{body}\n</CustomField>\n'
    )


@pytest.fixture
def metadata_dir(tmp_path):
    """An empty force-app/main/default tree with an objects folder."""
    meta = tmp_path / 'force-app' / 'main' / 'default'
    (meta / 'objects').mkdir(parents=True)
    return meta


@pytest.fixture
def add_field(metadata_dir):
    def _add(object_name: str, field_name: str, **kwargs) -> Path:
        return write_file(
            metadata_dir / 'objects' / object_name / 'fields' / f'{field_name}.field-meta.xml',
            field_xml(field_name, **kwargs),
        )
    return _add
