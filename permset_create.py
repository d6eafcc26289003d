"""Create a permission set, or add to an existing one, with maximum access.

Object permissions are granted by API name suffix, field permissions from the
local field definitions (or from an org describe with ``--checkpermissionable``)
and tab settings from the tab definitions found in the metadata directory.
"""

import contextlib
import json
import sys
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path

import click
import questionary

from org_api import DescribeError, FieldDescribe, describe_sobject
from permset_xml import (
    FIELD_META_SUFFIX,
    OBJECT_PERM_TAGS,
    PERMISSIONSET_SUFFIX,
    TAB_META_SUFFIX,
    FieldPermission,
    ObjectPermission,
    PermissionSetDocument,
    PermsetError,
    TabSetting,
    list_field_names,
    list_object_names,
    load_permission_set,
    parse_field_definition,
    write_permission_set,
)
from plugin_utils import NavigationInterrupt, prompt_with_navigation

FULL_ACCESS_TAGS = OBJECT_PERM_TAGS
CREATE_READ_TAGS = ['allowCreate', 'allowRead']
READ_ONLY_FIELD_TYPES = {'Summary', 'AutoNumber'}
MAX_DESCRIBE_WORKERS = 8


@dataclass
class PermsetContext:
    """Options and lookup state for a single ``permset create`` run."""

    name: str
    directory: Path
    object_name: str | None = None
    field_name: str | None = None
    tab: bool = False
    check_permissionable: bool = False
    target_org: str | None = None
    verbose: bool = False
    object_describe: dict[str, dict[str, FieldDescribe]] = field(default_factory=dict)
    resolved_describes: int = 0
    # Objects whose field files live under another object's folder (Event/Task -> Activity).
    field_folders: dict[str, str] = field(default_factory=dict)

    @property
    def objects_dir(self) -> Path:
        return self.directory / 'objects'

    @property
    def target_file(self) -> Path:
        return self.directory / 'permissionsets' / f'{self.name}{PERMISSIONSET_SUFFIX}'

    def folder_for(self, object_name: str) -> Path:
        return self.objects_dir / self.field_folders.get(object_name, object_name)

    def field_file(self, object_name: str, field_name: str) -> Path:
        return self.folder_for(object_name) / 'fields' / f'{field_name}{FIELD_META_SUFFIX}'

    def tab_file(self, object_name: str) -> Path:
        return self.directory / 'tabs' / f'{object_name}{TAB_META_SUFFIX}'


def add_object_permissions(document: PermissionSetDocument, object_name: str) -> bool:
    """Grant object access by suffix. Returns True when an entry was added."""

    if document.find_object_permission(object_name) is not None:
        click.echo(f"Object Permission already exists: {object_name}.  Nothing to add.")
        return False

    if object_name.endswith('__c'):
        tags = FULL_ACCESS_TAGS
        click.echo(f"Added regular object perms for {object_name}")
    elif object_name.endswith('__e'):
        tags = CREATE_READ_TAGS
        click.echo(f"Added object perms for platform event {object_name}")
    elif object_name.endswith('__b'):
        tags = CREATE_READ_TAGS
        click.echo(f"Added object perms for big object {object_name}")
    else:
        return False

    document.object_permissions.append(
        ObjectPermission(object=object_name, permissions={tag: True for tag in tags})
    )
    return True


def _add_field_from_describe(
    ctx: PermsetContext, document: PermissionSetDocument, object_name: str, field_name: str
) -> bool:
    field_describe = ctx.object_describe.get(object_name, {}).get(field_name)
    if field_describe is None:
        click.echo(click.style(f"field not found on org: {object_name}/{field_name}", fg='yellow'))
        return False

    # Required fields are not permissionable and the org rejects explicit grants for them.
    if not field_describe.permissionable:
        return False

    editable = field_describe.createable and field_describe.updateable
    document.field_permissions.append(
        FieldPermission(field=f'{object_name}.{field_name}', readable=True, editable=editable)
    )
    click.echo(f"Read{'/Edit' if editable else ''} permission added for field {object_name}/{field_name} ")
    return True


def _add_field_from_metadata(
    ctx: PermsetContext, document: PermissionSetDocument, object_name: str, field_name: str
) -> bool:
    field_path = ctx.field_file(object_name, field_name)
    if not field_path.is_file():
        raise PermsetError(f"field not found: {object_name}/{field_name}")

    definition = parse_field_definition(field_path)
    if ctx.verbose:
        click.echo(json.dumps(definition.to_dict(), indent=2))

    if (
        definition.required
        or definition.type == 'MasterDetail'
        or not definition.type
        or definition.full_name == 'OwnerId'
    ):
        click.echo(f"required field {object_name}/{field_name} needs no permissions ")
        return False

    field_key = f'{object_name}.{field_name}'
    if definition.type in READ_ONLY_FIELD_TYPES or definition.formula:
        document.field_permissions.append(FieldPermission(field=field_key, readable=True))
        click.echo(f"Read-only permission added for field {object_name}/{field_name} ")
    else:
        document.field_permissions.append(
            FieldPermission(field=field_key, readable=True, editable=True)
        )
        click.echo(f"Read/Edit permission added for field {object_name}/{field_name} ")
    return True


def add_field_permissions(
    ctx: PermsetContext, document: PermissionSetDocument, object_name: str, field_name: str
) -> bool:
    """Add read or read/edit access for one field. Returns True when an entry was added."""

    field_key = f'{object_name}.{field_name}'
    if document.find_field_permission(field_key) is not None:
        click.echo(f"Field Permission already exists: {field_key}.  Nothing to add.")
        return False

    if ctx.check_permissionable:
        return _add_field_from_describe(ctx, document, object_name, field_name)
    return _add_field_from_metadata(ctx, document, object_name, field_name)


def add_all_field_permissions(
    ctx: PermsetContext, document: PermissionSetDocument, object_name: str
) -> int:
    """Add every field found in the object's fields folder; returns how many were added."""

    click.echo(f"------ going to add all fields for {object_name}")
    fields_dir = ctx.folder_for(object_name) / 'fields'
    if not fields_dir.is_dir():
        click.echo(click.style(f"there is no fields folder at {fields_dir}", fg='yellow'))
        return 0

    added = 0
    for field_name in list_field_names(fields_dir):
        if add_field_permissions(ctx, document, object_name, field_name):
            added += 1
    return added


def add_tab(document: PermissionSetDocument, object_name: str) -> bool:
    """Grant tab visibility for the object. Returns True when an entry was added."""

    # only custom (__c) and external (__x) objects have tabs that can be granted
    if not ('__c' in object_name or '__x' in object_name):
        click.echo(click.style(f"Tab for this object type is not supported: {object_name}", fg='yellow'))
        return False

    if document.find_tab_setting(object_name) is not None:
        click.echo(f"Tab setting already exists: {object_name}.  Nothing to add.")
        return False

    document.tab_settings.append(TabSetting(tab=object_name, visibility='Visible'))
    click.echo(f"added tab permission for {object_name}")
    return True


def select_objects(ctx: PermsetContext) -> list[str]:
    """Return the objects to process, in order and without duplicates."""

    if ctx.object_name:
        return [ctx.object_name]
    if not ctx.objects_dir.is_dir():
        raise PermsetError(f"No objects folder found at {ctx.objects_dir}")
    return list_object_names(ctx.objects_dir)


def expand_activity(ctx: PermsetContext, objects: list[str]) -> list[str]:
    """Swap Activity for Event and Task, which describe supports and which share its fields."""

    if 'Activity' not in objects:
        return objects

    expanded = [name for name in objects if name != 'Activity']
    for name in ('Event', 'Task'):
        if name not in expanded:
            expanded.append(name)
        if not (ctx.objects_dir / name).is_dir():
            ctx.field_folders[name] = 'Activity'
    return expanded


def fetch_describes(
    ctx: PermsetContext, objects: list[str], max_workers: int = MAX_DESCRIBE_WORKERS
) -> None:
    """Describe every object concurrently; any failure aborts the whole batch."""

    if not objects:
        return

    click.echo('Getting objects describe from org')
    executor = ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(objects))))
    try:
        futures = {
            executor.submit(describe_sobject, object_name, ctx.target_org): object_name
            for object_name in objects
        }
        for future in as_completed(futures):
            object_name = futures[future]
            try:
                ctx.object_describe[object_name] = future.result()
            except DescribeError:
                click.echo(click.style('Failed.', fg='red'))
                raise
            except (KeyError, TypeError) as e:
                click.echo(click.style('Failed.', fg='red'))
                raise DescribeError(object_name, f"unexpected describe result ({e})") from e
            ctx.resolved_describes += 1
            click.echo(f"{ctx.resolved_describes}/{len(objects)}")
    finally:
        executor.shutdown(wait=False, cancel_futures=True)
    click.echo(click.style('Done.', fg='green'))


def validate(ctx: PermsetContext) -> None:
    if ctx.check_permissionable and not ctx.target_org:
        raise PermsetError('username is required when using --checkpermissionable')

    if ctx.field_name and not ctx.object_name:
        raise PermsetError('If you say a field, you have to say the object')

    if ctx.field_name and not ctx.field_file(ctx.object_name, ctx.field_name).is_file():
        raise PermsetError(f"Field does not exist: {ctx.field_name}")


def create_permission_set(ctx: PermsetContext) -> tuple[PermissionSetDocument, Path]:
    """Build the permission set for the selection and write it to disk."""

    validate(ctx)
    document = load_permission_set(ctx.target_file, ctx.name)

    objects = select_objects(ctx)
    click.echo(f"Object list is {','.join(objects)}")

    if ctx.check_permissionable:
        objects = expand_activity(ctx, objects)
        fetch_describes(ctx, objects)

    for object_name in objects:
        if not ctx.folder_for(object_name).is_dir():
            raise PermsetError(f"Couldn't find that object in {ctx.objects_dir}/{object_name}")

        add_object_permissions(document, object_name)

        if ctx.field_name:
            add_field_permissions(ctx, document, object_name, ctx.field_name)
        else:
            add_all_field_permissions(ctx, document, object_name)

        if ctx.tab and ctx.tab_file(object_name).is_file():
            add_tab(document, object_name)

    target = write_permission_set(document, ctx.target_file)
    return document, target


@click.command('create')
@click.option('-n', '--name', default=None,
              help="Permission set name. If it exists, new perms are added to it; if not, it is created.")
@click.option('-o', '--object', 'object_name', default=None,
              help='API name of an object to add perms for. If blank, every object, field and tab.')
@click.option('-f', '--field', 'field_name', default=None,
              help='API name of a field to add perms for. Requires --object. If blank, every field.')
@click.option('-d', '--directory', default=None,
              help='Where the metadata lives. Defaults to force-app/main/default.')
@click.option('-t', '--tab', is_flag=True,
              help='Also add the tab for the object (or every object) when one exists.')
@click.option('-c', '--checkpermissionable', 'check_permissionable', is_flag=True,
              help='Use a describe on the org to check that each field is permissionable.')
@click.option('-u', '--target-org', default=None, help='Username or alias of the org to describe against.')
@click.option('--verbose', is_flag=True, help='Print every parsed field definition.')
@click.option('--json', 'as_json', is_flag=True, help='Print the resulting permission set as JSON.')
@click.pass_obj
def create(settings, name, object_name, field_name, directory, tab, check_permissionable,
           target_org, verbose, as_json):
    """Create or add stuff to a permset with maximum access."""

    if not name:
        try:
            name = prompt_with_navigation(questionary.text('Permission set name:')).strip()
        except NavigationInterrupt:
            raise click.Abort() from None
        if not name:
            raise PermsetError('A permission set name is required.')

    ctx = PermsetContext(
        name=name,
        directory=Path(directory or settings.metadata_directory),
        object_name=object_name,
        field_name=field_name,
        tab=tab,
        check_permissionable=check_permissionable,
        target_org=target_org or settings.target_org,
        verbose=verbose,
    )
    if as_json:
        # stdout carries only the JSON document
        with contextlib.redirect_stdout(sys.stderr):
            document, target = create_permission_set(ctx)
            click.echo(click.style(f"Permissions added in {target}", fg='green'))
        click.echo(json.dumps(document.to_dict(), indent=2))
        return

    _, target = create_permission_set(ctx)
    click.echo(click.style(f"Permissions added in {target}", fg='green'))
