"""
Template documents — JSON persistence of CertificateKeyPairTemplate.

Each template lives in `Templates/<epoch seconds>.template`. The document is
a pydantic model: subject as an RFC 4514 string, enums by member name and
subject alternative names as (tag, value) pairs.
"""

from __future__ import annotations

import ipaddress
from datetime import datetime
from pathlib import Path

from cryptography import x509
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ca_manager.domain.enums import ExtendedKeyUsage, GeneralNameTag, KeyType, KeyUsage
from ca_manager.domain.errors import InvalidArgumentError, StoreIOError
from ca_manager.domain.models import CertificateKeyPairTemplate, as_utc

TEMPLATE_SUFFIX = ".template"


class GeneralNameDocument(BaseModel):
    model_config = ConfigDict(frozen=True)

    tag: GeneralNameTag
    value: str


class TemplateDocument(BaseModel):
    model_config = ConfigDict(extra="ignore")

    description: str | None = None
    subject: str
    key_type: str = Field(alias="keyType")
    key_usage: list[KeyUsage] = Field(default_factory=list, alias="keyUsage")
    extended_key_usage: list[str] = Field(default_factory=list, alias="extendedKeyUsage")
    subject_alternative_names: list[GeneralNameDocument] = Field(default_factory=list, alias="subjectAlternativeNames")
    ca_request: bool = Field(default=False, alias="caRequest")
    crl_location: str | None = Field(default=None, alias="crlLocation")
    creation_date: datetime = Field(alias="creationDate")


# ─────────────────────── General names ───────────────────────


def general_name_document(name: x509.GeneralName) -> GeneralNameDocument:
    match name:
        case x509.RFC822Name():
            return GeneralNameDocument(tag=GeneralNameTag.RFC822_NAME, value=name.value)
        case x509.DNSName():
            return GeneralNameDocument(tag=GeneralNameTag.DNS_NAME, value=name.value)
        case x509.UniformResourceIdentifier():
            return GeneralNameDocument(tag=GeneralNameTag.URI, value=name.value)
        case x509.DirectoryName():
            return GeneralNameDocument(tag=GeneralNameTag.DIRECTORY_NAME, value=name.value.rfc4514_string())
        case x509.IPAddress():
            return GeneralNameDocument(tag=GeneralNameTag.IP_ADDRESS, value=str(name.value))
        case x509.RegisteredID():
            return GeneralNameDocument(tag=GeneralNameTag.REGISTERED_ID, value=name.value.dotted_string)
        case _:
            raise InvalidArgumentError(f"Unsupported general name: {name!r}")


def general_name_of(document: GeneralNameDocument) -> x509.GeneralName:
    match document.tag:
        case GeneralNameTag.RFC822_NAME:
            return x509.RFC822Name(document.value)
        case GeneralNameTag.DNS_NAME:
            return x509.DNSName(document.value)
        case GeneralNameTag.URI:
            return x509.UniformResourceIdentifier(document.value)
        case GeneralNameTag.DIRECTORY_NAME:
            return x509.DirectoryName(x509.Name.from_rfc4514_string(document.value))
        case GeneralNameTag.IP_ADDRESS:
            if "/" in document.value:
                return x509.IPAddress(ipaddress.ip_network(document.value))
            return x509.IPAddress(ipaddress.ip_address(document.value))
        case GeneralNameTag.REGISTERED_ID:
            return x509.RegisteredID(x509.ObjectIdentifier(document.value))


# ─────────────────────── Templates ───────────────────────


def to_document(template: CertificateKeyPairTemplate) -> TemplateDocument:
    return TemplateDocument(
        description=template.description,
        subject=template.subject.rfc4514_string(),
        keyType=template.key_type.name,
        keyUsage=sorted(template.key_usage, key=lambda usage: usage.value),
        extendedKeyUsage=[usage.name for usage in template.extended_key_usage],
        subjectAlternativeNames=[general_name_document(name) for name in template.subject_alternative_names],
        caRequest=template.ca_request,
        crlLocation=template.crl_location,
        creationDate=template.creation_date,
    )


def from_document(document: TemplateDocument) -> CertificateKeyPairTemplate:
    key_type = KeyType.for_name(document.key_type)
    if key_type is None:
        raise InvalidArgumentError(f"Unknown key type in template: {document.key_type}")
    try:
        extended = tuple(ExtendedKeyUsage[name] for name in document.extended_key_usage)
    except KeyError as e:
        raise InvalidArgumentError(f"Unknown extended key usage in template: {e}") from e
    return CertificateKeyPairTemplate(
        subject=x509.Name.from_rfc4514_string(document.subject),
        key_type=key_type,
        description=document.description,
        key_usage=frozenset(document.key_usage),
        extended_key_usage=extended,
        subject_alternative_names=tuple(general_name_of(name) for name in document.subject_alternative_names),
        ca_request=document.ca_request,
        crl_location=document.crl_location,
        creation_date=as_utc(document.creation_date),
    )


def read_template(path: Path) -> CertificateKeyPairTemplate:
    """Raises StoreIOError for unreadable or malformed documents."""
    try:
        document = TemplateDocument.model_validate_json(path.read_bytes())
        return from_document(document)
    except (OSError, ValidationError, ValueError, InvalidArgumentError) as e:
        raise StoreIOError(f"Unable to read template {path.name}: {e}") from e


def write_template(template: CertificateKeyPairTemplate, path: Path) -> Path:
    path.write_text(to_document(template).model_dump_json(by_alias=True, indent=2), encoding="utf-8")
    return path
