"""Template assembly: sparse template fetch, compose/env merge, template lock."""
from dockstack.assembler.assembler import AssemblyResult, TemplateAssembler
from dockstack.assembler.assets import copy_service_assets
from dockstack.assembler.descriptor import merge_descriptor, resolve_required_services
from dockstack.assembler.env_merge import merge_env
from dockstack.assembler.fetcher import TemplateFetcher, fetch_templates
from dockstack.assembler.lockfile import check_lock

__all__ = [
    'AssemblyResult',
    'TemplateAssembler',
    'TemplateFetcher',
    'check_lock',
    'copy_service_assets',
    'fetch_templates',
    'merge_descriptor',
    'merge_env',
    'resolve_required_services',
]
