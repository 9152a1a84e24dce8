"""Fragments injected into every target's evaluation.

The order is fixed: infrastructure exposure, deployment agent, virtualisation
and test instrumentation, backdoor, legacy-model compatibility. Optional
fragments are included only when their flag is set.
"""

from __future__ import annotations

from typing import Final

from ..domain.network import CompileOptions, Fragment, mk_override

HOSTNAME_PRIORITY: Final[int] = 900
BACKDOOR_PORT: Final[int] = 512

VM_TESTING_MODULES: Final[tuple[str, ...]] = (
    "virtualisation/qemu-vm",
    "testing/test-instrumentation",
)


def infrastructure_fragment(name: str, options: CompileOptions) -> Fragment:
    return {
        "key": "infrastructure-exposure",
        "networking": {"hostName": mk_override(HOSTNAME_PRIORITY, name)},
        "infrastructure": {
            "enable": True,
            "enable_authentication": True,
            "generate_containers_expr": options.containers_helper,
        },
    }


def agent_fragment() -> Fragment:
    return {"key": "enable-agent", "services": {"agent": {"enable": True}}}


def backdoor_fragment(name: str) -> Fragment:
    """Expose a fixed backdoor address.

    >>> backdoor_fragment("web1")["infrastructure"]["properties"]["backdoor"]
    'TCP:web1:512'
    """

    return {
        "key": "backdoor",
        "infrastructure": {"properties": {"backdoor": f"TCP:{name}:{BACKDOOR_PORT}"}},
    }


def legacy_fragment(name: str, options: CompileOptions) -> Fragment:
    """Expose legacy deployment options and default the deployment host to *name*.

    Completeness checks are turned off; the legacy tooling validated the model.
    """

    return {
        "key": "legacy-model",
        "imports": [options.legacy_options],
        "deployment": {"targetHost": mk_override(HOSTNAME_PRIORITY, name)},
        "environment": {"check_configuration_options": False},
    }


def injected_fragments(name: str, options: CompileOptions) -> list[Fragment]:
    """Return the injected fragments for target *name*, in evaluation order.

    Examples
    --------
    >>> [f["key"] if isinstance(f, dict) else f for f in injected_fragments("web1", CompileOptions())]
    ['infrastructure-exposure', 'enable-agent']
    >>> len(injected_fragments("web1", CompileOptions(enable_agent=False, use_vm_testing=True,
    ...                                               use_backdoor=True, legacy_model=True)))
    5
    """

    fragments: list[Fragment] = [infrastructure_fragment(name, options)]
    if options.enable_agent:
        fragments.append(agent_fragment())
    if options.use_vm_testing:
        fragments.extend(VM_TESTING_MODULES)
    if options.use_backdoor:
        fragments.append(backdoor_fragment(name))
    if options.legacy_model:
        fragments.append(legacy_fragment(name, options))
    return fragments
