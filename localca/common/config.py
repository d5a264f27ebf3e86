# localca/common/config.py
"""
Configuration models for CA and leaf issuance.

The interactive prompts of the shell tooling are replaced by these models:
every prompt is a field with a documented default. Values may come from
CLI flags, LOCALCA_* environment variables or (as a fallback) prompts.
"""
import ipaddress
import os
from enum import Enum
from typing import Annotated, List, Optional

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)

from localca.common.errors import InvalidConfigError

ENV_PREFIX = "LOCALCA_"
SUPPORTED_KEY_SIZES = (2048, 3072, 4096)

DEFAULT_CA_KEY_BITS = 4096
DEFAULT_CA_DAYS = 3650
DEFAULT_CA_CN = "My Root CA"
DEFAULT_LEAF_KEY_BITS = 3072
DEFAULT_LEAF_DAYS = 200

DEFAULT_CA_KEY = "rootCA.key"
DEFAULT_CA_CERT = "rootCA.crt"
DEFAULT_CA_SERIAL = "rootCA.srl"
DEFAULT_CA_STORE = "rootCA.db"

# RFC 5280 upper bounds, in UTF-8 bytes
NAME_LIMITS = {
    "state": 128,
    "locality": 128,
    "organization": 64,
    "organizational_unit": 64,
    "common_name": 64,
    "email": 255,
}


def from_env(name: str, default: Optional[str] = None) -> Optional[str]:
    """Read LOCALCA_<NAME> from the environment; empty values count as unset."""
    val = os.environ.get(ENV_PREFIX + name.upper())
    return val if val else default


def check_key_bits(v: int) -> int:
    if v not in SUPPORTED_KEY_SIZES:
        raise ValueError(f"unsupported RSA key size {v}, expected one of {SUPPORTED_KEY_SIZES}")
    return v


def check_secret(v: SecretStr) -> SecretStr:
    # no weak fallback passphrase: an empty one is rejected
    if not v.get_secret_value():
        raise ValueError("passphrase must not be empty")
    return v


def to_a_label(name: str) -> str:
    """IDNA form of a DNS name: café.internal -> xn--caf-dma.internal."""
    try:
        return name.encode("idna").decode("ascii")
    except UnicodeError as e:
        raise ValueError(f"invalid DNS name {name!r}: {e}") from e


KeyBits = Annotated[int, AfterValidator(check_key_bits)]
Passphrase = Annotated[SecretStr, AfterValidator(check_secret)]


class SanType(str, Enum):
    DNS = "DNS"
    IP = "IP"


class SubjectAltName(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: SanType
    value: str

    @field_validator("value")
    @classmethod
    def strip_value(cls, v: str, info: ValidationInfo) -> str:
        v = v.strip()
        if not v:
            raise ValueError("subject alternative name must not be empty")
        if info.data.get("type") is SanType.DNS and not v.isascii():
            v = to_a_label(v)
        return v

    @model_validator(mode="after")
    def check_value(self):
        if self.type is SanType.IP:
            ipaddress.ip_address(self.value)
        elif any(c.isspace() for c in self.value):
            raise ValueError(f"invalid DNS name: {self.value!r}")
        return self

    def __str__(self):
        return f"{self.type.value}:{self.value}"


class DistinguishedName(BaseModel):
    model_config = ConfigDict(frozen=True)

    country: str = Field("US", min_length=2, max_length=2)
    state: str = "Washington D.C."
    locality: str = "Washington"
    organization: str = "Internet CI Ltd"
    organizational_unit: str = "Sec"
    common_name: str
    email: Optional[str] = None

    @field_validator("state", "locality", "organization", "organizational_unit", "common_name")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    @field_validator("country")
    @classmethod
    def upper_country(cls, v: str) -> str:
        if not (v.isascii() and v.isalpha()):
            raise ValueError(f"country must be a two-letter code, got {v!r}")
        return v.upper()

    @field_validator("email")
    @classmethod
    def check_email(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        v = v.strip()
        if "@" not in v:
            raise ValueError(f"invalid email address: {v!r}")
        return v

    @model_validator(mode="after")
    def check_lengths(self):
        for field, limit in NAME_LIMITS.items():
            val = getattr(self, field)
            if val is not None and len(val.encode("utf-8")) > limit:
                raise ValueError(f"{field} is longer than {limit} bytes: {val!r}")
        return self


class CAConfig(BaseModel):
    key_bits: KeyBits = DEFAULT_CA_KEY_BITS
    validity_days: int = Field(DEFAULT_CA_DAYS, gt=0)
    subject: DistinguishedName = Field(default_factory=lambda: DistinguishedName(common_name=DEFAULT_CA_CN))
    passphrase: Passphrase


class CAPaths(BaseModel):
    key: str = DEFAULT_CA_KEY
    cert: str = DEFAULT_CA_CERT
    serial: str = DEFAULT_CA_SERIAL
    store: str = DEFAULT_CA_STORE

    @classmethod
    def in_dir(cls, out_dir: str, **names) -> "CAPaths":
        """Resolve file names (defaults or overrides) relative to out_dir."""
        base = cls(**{k: v for k, v in names.items() if v})
        return cls(**{k: os.path.join(out_dir, v) for k, v in base.model_dump().items()})


class LeafConfig(BaseModel):
    name: str
    key_bits: KeyBits = DEFAULT_LEAF_KEY_BITS
    validity_days: int = Field(DEFAULT_LEAF_DAYS, gt=0)
    subject: DistinguishedName
    sans: List[SubjectAltName] = Field(default_factory=list)
    key_passphrase: Passphrase
    pkcs12: bool = False
    pkcs12_password: Optional[SecretStr] = None
    clamp_validity: bool = False

    @field_validator("name")
    @classmethod
    def check_name(cls, v: str) -> str:
        v = v.strip()
        if not v or "/" in v or os.sep in v or v in (".", ".."):
            raise ValueError(f"invalid output name: {v!r}")
        return v

    @model_validator(mode="after")
    def default_sans(self):
        # primary DNS entry defaults to the CN
        sans = list(self.sans)
        if not any(s.type is SanType.DNS for s in sans):
            sans.insert(0, SubjectAltName(type=SanType.DNS, value=self.subject.common_name))
        seen, ordered = set(), []
        for s in sans:
            if (s.type, s.value) not in seen:
                seen.add((s.type, s.value))
                ordered.append(s)
        self.sans = ordered
        return self


def build_config(model, **values):
    """Instantiate a config model, turning pydantic errors into InvalidConfigError."""
    try:
        return model(**values)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or model.__name__}: {err['msg']}" for err in e.errors()
        )
        raise InvalidConfigError(f"invalid {model.__name__}: {problems}") from e
