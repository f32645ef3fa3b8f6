"""LDAP filter, DN and ldapsearch helpers for Proxmox LDAP/AD realm setup.

Pure string transformations: organisational paths such as
``test.local/HQ/IT`` become distinguished names, which are assembled into the
user and group filters a Proxmox AD realm sync needs. The reverse direction
turns base64 ``memberOf::`` values from ldapsearch back into readable paths.
"""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass

from ldap3.core.exceptions import LDAPInvalidDnError
from ldap3.utils.conv import escape_filter_chars
from ldap3.utils.dn import escape_rdn, parse_dn

DEFAULT_DOMAIN = "example.com"
LEAF_OU = "OU"
LEAF_CN = "CN"
USER_ID_ATTRIBUTES = ("sAMAccountName", "userPrincipalName", "uid")
ATTRIBUTE_PREFIX = re.compile(r"^[a-zA-Z0-9;-]+::\s*")
BASE64_ERROR = "Error: Invalid Base64 string."


@dataclass
class UserCondition:
    """A specific account allowed in addition to group members."""

    attribute: str
    value: str

    @classmethod
    def parse(cls, text: str) -> UserCondition:
        """Parse ``attr=value``; a bare value means ``sAMAccountName``.

        Returns:
            The UserCondition.
        """
        attribute, sep, value = text.partition("=")
        if not sep:
            return cls("sAMAccountName", text.strip())
        return cls(attribute.strip(), value.strip())

    def to_filter(self) -> str:
        return f"({self.attribute}={escape_filter_chars(self.value)})"


def domain_to_dn(domain: str) -> str:
    """``test.local`` -> ``DC=test,DC=local``."""
    if not domain:
        return ""
    return ",".join(f"DC={part}" for part in domain.split("."))


def detect_domain(paths: list[str]) -> str:
    """Take the domain from the first segment of the first path.

    Returns:
        The domain, or ``example.com`` if the first segment has no dot.
    """
    if paths:
        first = paths[0].split("/")[0].strip()
        if "." in first:
            return first
    return DEFAULT_DOMAIN


def path_to_dn(path: str, domain: str, leaf: str = LEAF_OU) -> str:
    """Convert a slash-delimited organisational path into a DN.

    The leading domain segment is dropped if present and the remaining
    segments are reversed. With ``leaf="OU"`` every segment is an OU
    (directory path); with ``leaf="CN"`` the last segment is the object's CN
    (group path)::

        path_to_dn("example.com/A/B", "example.com")        -> OU=B,OU=A,DC=example,DC=com
        path_to_dn("example.com/A/B", "example.com", "CN")  -> CN=B,OU=A,DC=example,DC=com

    Returns:
        The DN, or an empty string when the path has no segments besides the domain.

    Raises:
        ValueError: If ``leaf`` is neither ``OU`` nor ``CN``.
    """
    leaf = leaf.upper()
    if leaf not in {LEAF_OU, LEAF_CN}:
        msg = f"leaf must be OU or CN, not {leaf!r}"
        raise ValueError(msg)

    parts = [part.strip() for part in path.split("/") if part.strip()]
    if parts and parts[0].lower() == domain.lower():
        parts.pop(0)
    if not parts:
        return ""

    components = []
    if leaf == LEAF_CN:
        components.append(f"CN={escape_rdn(parts.pop())}")
    components.extend(f"OU={escape_rdn(part)}" for part in reversed(parts))
    components.append(domain_to_dn(domain))
    return ",".join(components)


def build_user_filter(dns: list[str], users: list[UserCondition]) -> str:
    """Filter for accounts allowed to log in: group members or listed users.

    Returns:
        ``(&(objectCategory=person)(objectClass=user)(|...))``, without the OR
        block when there are no conditions.
    """
    object_req = "(objectCategory=person)(objectClass=user)"
    conditions = [f"(memberOf={escape_filter_chars(dn)})" for dn in dns]
    conditions.extend(user.to_filter() for user in users if user.value)
    if not conditions:
        return f"(&{object_req})"
    return f"(&{object_req}(|{''.join(conditions)}))"


def build_group_filter(dns: list[str]) -> str:
    """Filter restricting a realm sync to exactly the listed groups.

    Returns:
        ``(&(objectClass=group)(|(distinguishedName=...)...))``, or
        ``((objectClass=group))`` when no groups are given.
    """
    object_req = "(objectClass=group)"
    if not dns:
        return f"({object_req})"
    conditions = "".join(f"(distinguishedName={escape_filter_chars(dn)})" for dn in dns)
    return f"(&{object_req}(|{conditions}))"


def format_ldap_filter(ldap_filter: str) -> str:
    """Pretty-print a filter, one opening parenthesis per line, indented by depth."""
    indent = 0
    output = []
    for char in ldap_filter:
        if char == "(":
            output.append("\n" + "  " * indent + char)
            indent += 1
        elif char == ")":
            indent -= 1
            output.append(char)
        else:
            output.append(char)
    return "".join(output).strip()


@dataclass
class FilterSet:
    """Everything the filter generator produces for a list of paths."""

    domain: str
    base_dn: str
    dns: list[str]
    user_filter: str
    group_filter: str

    @property
    def pretty_user_filter(self) -> str:
        return format_ldap_filter(self.user_filter)


def generate_filters(
    paths: list[str], users: list[UserCondition], leaf: str = LEAF_CN
) -> FilterSet:
    """Detect the domain, convert every path and assemble both filters.

    Returns:
        The FilterSet.
    """
    clean = [path.strip() for path in paths if path.strip()]
    domain = detect_domain(clean)
    dns = [dn for dn in (path_to_dn(path, domain, leaf) for path in clean) if dn]
    return FilterSet(
        domain=domain,
        base_dn=domain_to_dn(domain),
        dns=dns,
        user_filter=build_user_filter(dns, users),
        group_filter=build_group_filter(dns),
    )


def build_ldapsearch_command(
    host: str = "",
    base_dn: str = "",
    bind_dn: str = "",
    target_id: str = "",
    id_attr: str = "sAMAccountName",
) -> str:
    """Assemble an ``ldapsearch`` command line for looking up one account.

    ``-W`` makes ldapsearch prompt for the bind password.

    Returns:
        The command as a single shell string.
    """
    host = host.strip() or "ldap_server_ip"
    base_dn = base_dn.strip() or "dc=example,dc=com"
    target_id = target_id.strip() or "username"

    parts = ["ldapsearch -x"]
    parts.append(f"-H {host}" if "://" in host else f"-H ldap://{host}")
    if bind_dn.strip():
        parts.append(f'-D "{bind_dn.strip()}" -W')
    parts.append(f'-b "{base_dn}"')
    parts.append(f'"({id_attr}={target_id})"')
    return " ".join(parts)


def decode_base64_value(value: str) -> str:
    """Decode one base64 attribute value as UTF-8.

    Returns:
        The decoded text, or the invalid-input marker.
    """
    value = ATTRIBUTE_PREFIX.sub("", value.strip())
    if not value:
        return ""
    try:
        return base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return BASE64_ERROR


def decode_base64_values(text: str) -> list[str]:
    """Decode each line of ``text``, stripping ``attr::`` prefixes copied from ldapsearch.

    Returns:
        One decoded string per input line.
    """
    return [decode_base64_value(line) for line in text.strip().splitlines()]


def dn_to_path(dn: str) -> str:
    """``CN=Users,OU=IT,OU=Head,DC=test,DC=local`` -> ``test.local/Head/IT``.

    CN components are dropped; only the OU hierarchy and domain remain.

    Returns:
        The path, or an empty string if the DN cannot be parsed.
    """
    try:
        components = parse_dn(dn, escape=False, strip=True)
    except LDAPInvalidDnError:
        return ""

    domain_parts = []
    ous: list[str] = []
    for attribute, value, _separator in components:
        key = attribute.strip().upper()
        if key == "DC":
            domain_parts.append(value)
        elif key == "OU":
            ous.insert(0, value)

    domain = ".".join(domain_parts)
    path = "/".join(ous)
    if not domain and not path:
        return ""
    return domain + (f"/{path}" if path else "")
