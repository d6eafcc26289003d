"""Permission set and custom field metadata, read from and written to XML."""

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path

import click

from plugin_utils import SF_NAMESPACE_URI

NS = {'sf': SF_NAMESPACE_URI}
ET.register_namespace('', SF_NAMESPACE_URI)

PERMISSIONSET_SUFFIX = '.permissionset-meta.xml'
FIELD_META_SUFFIX = '.field-meta.xml'
TAB_META_SUFFIX = '.tab-meta.xml'

OBJECT_PERM_TAGS = [
    'allowCreate', 'allowDelete', 'allowEdit', 'allowRead', 'modifyAllRecords', 'viewAllRecords'
]
XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>\n'


class PermsetError(click.ClickException):
    """User-facing failure while building a permission set."""


def _local(tag: str) -> str:
    return tag.split('}')[-1] if '}' in tag else tag


def _qualified(tag: str) -> str:
    return f'{{{SF_NAMESPACE_URI}}}{tag}'


def _to_bool(text: str | None) -> bool:
    return (text or '').strip().lower() == 'true'


def _bool_text(value: bool) -> str:
    return str(bool(value)).lower()


@dataclass
class ObjectPermission:
    object: str
    permissions: dict[str, bool] = field(default_factory=dict)
    extras: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = {tag: _bool_text(value) for tag, value in self.permissions.items()}
        data.update(self.extras)
        data['object'] = self.object
        return dict(sorted(data.items()))


@dataclass
class FieldPermission:
    field: str
    readable: bool = True
    editable: bool | None = None
    extras: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = dict(self.extras)
        if self.editable is not None:
            data['editable'] = _bool_text(self.editable)
        data['field'] = self.field
        data['readable'] = _bool_text(self.readable)
        return dict(sorted(data.items()))


@dataclass
class TabSetting:
    tab: str
    visibility: str = 'Visible'
    extras: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = dict(self.extras)
        data['tab'] = self.tab
        data['visibility'] = self.visibility
        return dict(sorted(data.items()))


@dataclass
class PermissionSetDocument:
    """In-memory permission set.

    Only the three permission lists plus label and activation flag are modelled;
    every other top-level element of an existing file is carried through as-is.
    """

    label: str | None = None
    has_activation_required: bool | None = None
    object_permissions: list[ObjectPermission] = field(default_factory=list)
    field_permissions: list[FieldPermission] = field(default_factory=list)
    tab_settings: list[TabSetting] = field(default_factory=list)
    other_elements: list[ET.Element] = field(default_factory=list)

    def find_object_permission(self, object_name: str) -> ObjectPermission | None:
        return next((op for op in self.object_permissions if op.object == object_name), None)

    def find_field_permission(self, field_key: str) -> FieldPermission | None:
        return next((fp for fp in self.field_permissions if fp.field == field_key), None)

    def find_tab_setting(self, tab_name: str) -> TabSetting | None:
        return next((ts for ts in self.tab_settings if ts.tab == tab_name), None)

    def to_dict(self) -> dict:
        data = {}
        for element in self.other_elements:
            data.setdefault(_local(element.tag), []).append(_element_to_value(element))
        data = {key: value[0] if len(value) == 1 else value for key, value in data.items()}
        if self.has_activation_required is not None:
            data['hasActivationRequired'] = _bool_text(self.has_activation_required)
        if self.label is not None:
            data['label'] = self.label
        if self.object_permissions:
            data['objectPermissions'] = [op.to_dict() for op in self.object_permissions]
        if self.field_permissions:
            data['fieldPermissions'] = [fp.to_dict() for fp in self.field_permissions]
        if self.tab_settings:
            data['tabSettings'] = [ts.to_dict() for ts in self.tab_settings]
        return data


@dataclass
class FieldDefinition:
    """The parts of a ``*.field-meta.xml`` that decide field access."""

    full_name: str | None
    type: str | None
    required: bool = False
    formula: str | None = None

    def to_dict(self) -> dict:
        return {
            'fullName': self.full_name,
            'type': self.type,
            'required': self.required,
            'formula': self.formula,
        }


def _element_to_value(element: ET.Element):
    children = list(element)
    if not children:
        return element.text
    data = {}
    for child in children:
        data.setdefault(_local(child.tag), []).append(_element_to_value(child))
    return {key: value[0] if len(value) == 1 else value for key, value in data.items()}


def _children_text(node: ET.Element) -> dict[str, str]:
    return {_local(child.tag): (child.text or '').strip() for child in node}


def _parse_object_permission(node: ET.Element) -> ObjectPermission:
    values = _children_text(node)
    op = ObjectPermission(object=values.pop('object', ''))
    for tag in OBJECT_PERM_TAGS:
        if tag in values:
            op.permissions[tag] = _to_bool(values.pop(tag))
    op.extras = values
    return op


def _parse_field_permission(node: ET.Element) -> FieldPermission:
    values = _children_text(node)
    editable = values.pop('editable', None)
    return FieldPermission(
        field=values.pop('field', ''),
        readable=_to_bool(values.pop('readable', None)),
        editable=None if editable is None else _to_bool(editable),
        extras=values,
    )


def _parse_tab_setting(node: ET.Element) -> TabSetting:
    values = _children_text(node)
    return TabSetting(
        tab=values.pop('tab', ''),
        visibility=values.pop('visibility', 'Visible'),
        extras=values,
    )


def _parse_xml(path: Path) -> ET.Element:
    try:
        return ET.parse(path).getroot()
    except ET.ParseError as e:
        raise PermsetError(f"Error parsing XML {path}: {e}") from e


def new_permission_set(label: str) -> PermissionSetDocument:
    """Return the skeleton used when no permission set file exists yet."""
    return PermissionSetDocument(label=label, has_activation_required=False)


def load_permission_set(path: Path, label: str) -> PermissionSetDocument:
    """Read an existing permission set, or start a new one named ``label``."""

    path = Path(path)
    if not path.is_file():
        return new_permission_set(label)

    root = _parse_xml(path)
    if _local(root.tag) != 'PermissionSet':
        raise PermsetError(f"{path} is not a PermissionSet (found <{_local(root.tag)}>).")

    document = PermissionSetDocument()
    for child in root:
        tag = _local(child.tag)
        if tag == 'objectPermissions':
            document.object_permissions.append(_parse_object_permission(child))
        elif tag == 'fieldPermissions':
            document.field_permissions.append(_parse_field_permission(child))
        elif tag == 'tabSettings':
            document.tab_settings.append(_parse_tab_setting(child))
        elif tag == 'label':
            document.label = (child.text or '').strip()
        elif tag == 'hasActivationRequired':
            document.has_activation_required = _to_bool(child.text)
        else:
            document.other_elements.append(child)
    return document


def _entry_element(tag: str, values: dict[str, str]) -> ET.Element:
    node = ET.Element(_qualified(tag))
    for child_tag, text in values.items():
        ET.SubElement(node, _qualified(child_tag)).text = text
    return node


def _requalify(element: ET.Element) -> ET.Element:
    """Put unqualified elements from a namespace-less file into the metadata namespace."""
    if '}' not in element.tag:
        element.tag = _qualified(element.tag)
    for child in element:
        _requalify(child)
    return element


def permission_set_to_xml(document: PermissionSetDocument) -> str:
    """Serialize the document with top-level elements in metadata order."""

    elements: list[ET.Element] = [_requalify(e) for e in document.other_elements]
    if document.has_activation_required is not None:
        activation = ET.Element(_qualified('hasActivationRequired'))
        activation.text = _bool_text(document.has_activation_required)
        elements.append(activation)
    if document.label is not None:
        label = ET.Element(_qualified('label'))
        label.text = document.label
        elements.append(label)
    elements.extend(_entry_element('objectPermissions', op.to_dict()) for op in document.object_permissions)
    elements.extend(_entry_element('fieldPermissions', fp.to_dict()) for fp in document.field_permissions)
    elements.extend(_entry_element('tabSettings', ts.to_dict()) for ts in document.tab_settings)

    root = ET.Element(_qualified('PermissionSet'))
    # Stable sort keeps list order within each tag.
    for element in sorted(elements, key=lambda e: _local(e.tag)):
        root.append(element)
    ET.indent(root, space="    ")
    return XML_DECLARATION + ET.tostring(root, encoding='unicode') + '\n'


def write_permission_set(document: PermissionSetDocument, path: Path) -> Path:
    """Write the serialized document to ``path``, creating its folder if needed."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(permission_set_to_xml(document), encoding='utf-8')
    return path


def parse_field_definition(path: Path) -> FieldDefinition:
    """Parse a CustomField definition file."""

    root = _parse_xml(Path(path))
    values = {}
    for child in root:
        values.setdefault(_local(child.tag), child.text)
    field_type = (values.get('type') or '').strip() or None
    formula = values.get('formula')
    return FieldDefinition(
        full_name=(values.get('fullName') or '').strip() or None,
        type=field_type,
        required=_to_bool(values.get('required')),
        formula=formula.strip() if formula and formula.strip() else None,
    )


def list_field_names(fields_dir: Path) -> list[str]:
    """Return field API names for every definition file in ``fields_dir``."""
    return sorted({p.name.split('.')[0] for p in Path(fields_dir).glob(f'*{FIELD_META_SUFFIX}')})


def list_object_names(objects_dir: Path) -> list[str]:
    return sorted(d.name for d in Path(objects_dir).iterdir() if d.is_dir())
