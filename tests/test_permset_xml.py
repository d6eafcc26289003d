import xml.etree.ElementTree as ET

import pytest

from conftest import field_xml, write_file
from permset_xml import (
    NS,
    FieldPermission,
    ObjectPermission,
    PermsetError,
    TabSetting,
    load_permission_set,
    new_permission_set,
    parse_field_definition,
    permission_set_to_xml,
    write_permission_set,
)
from plugin_utils import SF_NAMESPACE_URI

EXISTING_PERMSET = f"""<?xml version="1.0" encoding="UTF-8"?>
<PermissionSet xmlns="{SF_NAMESPACE_URI}">
    <description>Existing access</description>
    <fieldPermissions>
        <editable>false</editable>
        <field>Account__c.Notes__c</field>
        <readable>true</readable>
    </fieldPermissions>
    <hasActivationRequired>false</hasActivationRequired>
    <label>Sales Ops</label>
    <objectPermissions>
        <allowCreate>false</allowCreate>
        <allowRead>true</allowRead>
        <object>Account__c</object>
        <viewAllFields>true</viewAllFields>
    </objectPermissions>
    <userPermissions>
        <enabled>true</enabled>
        <name>ApiEnabled</name>
    </userPermissions>
</PermissionSet>
"""


def _tags(root):
    return [child.tag.split('}')[-1] for child in root]


def test_missing_file_gives_skeleton(tmp_path):
    document = load_permission_set(tmp_path / 'Nope.permissionset-meta.xml', 'Nope')

    assert document.label == 'Nope'
    assert document.has_activation_required is False
    assert document.object_permissions == []
    assert document.field_permissions == []
    assert document.tab_settings == []


def test_skeleton_serializes_with_namespace_and_declaration():
    xml = permission_set_to_xml(new_permission_set('MyPermSet1'))

    assert xml.startswith('<?xml version="1.0" encoding="UTF-8"?>\n')
    root = ET.fromstring(xml.split('\n', 1)[1])
    assert root.tag == f'{{{SF_NAMESPACE_URI}}}PermissionSet'
    assert root.findtext('sf:hasActivationRequired', namespaces=NS) == 'false'
    assert root.findtext('sf:label', namespaces=NS) == 'MyPermSet1'


def test_existing_file_is_parsed_into_lists(tmp_path):
    path = write_file(tmp_path / 'Sales.permissionset-meta.xml', EXISTING_PERMSET)

    document = load_permission_set(path, 'ignored')

    assert document.label == 'Sales Ops'
    [op] = document.object_permissions
    assert op.object == 'Account__c'
    assert op.permissions == {'allowCreate': False, 'allowRead': True}
    assert op.extras == {'viewAllFields': 'true'}
    [fp] = document.field_permissions
    assert (fp.field, fp.readable, fp.editable) == ('Account__c.Notes__c', True, False)
    assert [e.tag.split('}')[-1] for e in document.other_elements] == ['description', 'userPermissions']


def test_round_trip_keeps_unmodelled_elements_in_metadata_order(tmp_path):
    path = write_file(tmp_path / 'Sales.permissionset-meta.xml', EXISTING_PERMSET)
    document = load_permission_set(path, 'ignored')
    document.object_permissions.append(
        ObjectPermission(object='Event__e', permissions={'allowCreate': True, 'allowRead': True})
    )
    document.tab_settings.append(TabSetting(tab='Account__c'))

    write_permission_set(document, path)
    root = ET.parse(path).getroot()

    assert _tags(root) == [
        'description',
        'fieldPermissions',
        'hasActivationRequired',
        'label',
        'objectPermissions',
        'objectPermissions',
        'tabSettings',
        'userPermissions',
    ]
    first, second = root.findall('sf:objectPermissions', NS)
    assert _tags(first) == ['allowCreate', 'allowRead', 'object', 'viewAllFields']
    assert _tags(second) == ['allowCreate', 'allowRead', 'object']
    assert root.findtext('sf:userPermissions/sf:name', namespaces=NS) == 'ApiEnabled'


def test_read_only_field_permission_omits_editable():
    document = new_permission_set('MyPermSet1')
    document.field_permissions.append(FieldPermission(field='Account__c.Total__c', readable=True))

    root = ET.fromstring(permission_set_to_xml(document).split('\n', 1)[1])
    node = root.find('sf:fieldPermissions', NS)

    assert _tags(node) == ['field', 'readable']


def test_unparseable_permission_set_is_an_error(tmp_path):
    path = write_file(tmp_path / 'Broken.permissionset-meta.xml', '<PermissionSet><label>')

    with pytest.raises(PermsetError, match='Error parsing XML'):
        load_permission_set(path, 'Broken')


def test_other_metadata_type_is_rejected(tmp_path):
    path = write_file(
        tmp_path / 'Admin.permissionset-meta.xml',
        f'<Profile xmlns="{SF_NAMESPACE_URI}"><custom>false</custom></Profile>',
    )

    with pytest.raises(PermsetError, match='is not a PermissionSet'):
        load_permission_set(path, 'Admin')


def test_parse_field_definition(tmp_path):
    path = write_file(
        tmp_path / 'Total__c.field-meta.xml',
        field_xml('Total__c', field_type='Currency', formula='Amount__c * 2'),
    )

    definition = parse_field_definition(path)

    assert definition.full_name == 'Total__c'
    assert definition.type == 'Currency'
    assert definition.required is False
    assert definition.formula == 'Amount__c * 2'


def test_parse_field_definition_without_type(tmp_path):
    path = write_file(tmp_path / 'Name.field-meta.xml', field_xml('Name', field_type=None, required=True))

    definition = parse_field_definition(path)

    assert definition.type is None
    assert definition.required is True
