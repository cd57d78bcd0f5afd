# Copyright 2024 Redpanda Data, Inc.
#
# Use of this software is governed by the Business Source License
# included in the file licenses/BSL.md
#
# As of the Change Date specified in that file, in accordance with
# the Business Source License, use of this software will be governed
# by the Apache License, Version 2.0
from dataclasses import astuple, dataclass
from enum import Enum, auto
from logging import Logger
from typing import Any, Iterator, Mapping, Protocol

# pyright: strict

# Types shared between the cluster service and the client wrappers.


@dataclass
class SaslCredentials:
    """Credentials and algorithm for SASL authentication."""

    username: str
    password: str
    algorithm: str

    # allow credentials to be unpacked
    def __iter__(self) -> Iterator[str]:
        return iter(astuple(self))

    @property
    def mechanism(self):
        """The SASL authentication mechanism (an alias for self.algorithm)."""
        return self.algorithm


class SecurityProtocol(Enum):
    """The four possible security protocol options for Kafka authentication."""
    PLAINTEXT = auto()
    SSL = auto()
    SASL_PLAINTEXT = auto()
    SASL_SSL = auto()

    def __str__(self):
        return self.name


SIMPLE_SASL_MECHANISMS = ['PLAIN', 'SCRAM-SHA-256', 'SCRAM-SHA-512']


class InvalidKafkaSecurity(RuntimeError):
    """Indicates a consistency check failed while building client security
    settings. This is a local check and does not involve contacting the server."""
    pass


def check_username_password(username: str | None, password: str | None):
    """Check that either both username and password are set, or neither.
    Empty string username is considered unset, but empty password is considered set"""
    if username and password is None:
        raise InvalidKafkaSecurity('username set but password not set')
    if password is not None and not username:
        raise InvalidKafkaSecurity('password set but username not set')


class KafkaClientSecurity:
    """Bundles up the security information a client needs to connect to
    the brokers under test."""
    def __init__(self, sasl: SaslCredentials | None, tls_enabled: bool):
        if sasl is not None and sasl.mechanism not in SIMPLE_SASL_MECHANISMS:
            raise InvalidKafkaSecurity(
                f'unsupported SASL mechanism: {sasl.mechanism}')
        self._sasl = sasl
        self.tls_enabled = tls_enabled

    @classmethod
    def from_config(cls, sasl: Mapping[str, Any] | None,
                    tls_enabled: bool) -> "KafkaClientSecurity":
        """Build from the `sasl` section of the cluster globals."""
        if not sasl:
            return cls(None, tls_enabled)

        username = sasl.get('username')
        password = sasl.get('password')
        check_username_password(username, password)
        if not username or password is None:
            raise InvalidKafkaSecurity(
                'sasl section requires a username and password')
        return cls(
            SaslCredentials(username, password,
                            sasl.get('mechanism', 'SCRAM-SHA-256')),
            tls_enabled)

    @property
    def sasl_enabled(self):
        return self._sasl is not None

    @property
    def security_protocol(self):
        lookup: dict[tuple[bool, bool], SecurityProtocol] = {
            (False, False): SecurityProtocol.PLAINTEXT,
            (False, True): SecurityProtocol.SASL_PLAINTEXT,
            (True, False): SecurityProtocol.SSL,
            (True, True): SecurityProtocol.SASL_SSL,
        }

        return lookup[(self.tls_enabled, self.sasl_enabled)]

    @property
    def credentials(self) -> SaslCredentials | None:
        return self._sasl

    def librdkafka_config(self) -> dict[str, str]:
        """Return the security configuration as librdkafka properties."""
        if self._sasl is None:
            return {
                'security.protocol': 'ssl'
            } if self.tls_enabled else {}

        return {
            'security.protocol': self.security_protocol.name.lower(),
            'sasl.username': self._sasl.username,
            'sasl.password': self._sasl.password,
            'sasl.mechanism': self._sasl.mechanism
        }

    def to_dict(self) -> dict[str, str]:
        """Return the security configuration as keyword arguments for kafka-python."""
        if self._sasl is None:
            # by convention we return an empty dict when we are using PLAINTEXT
            # since clients default to this protocol
            return dict(security_protocol=self.security_protocol.name
                        ) if self.tls_enabled else {}

        return dict(security_protocol=self.security_protocol.name,
                    sasl_mechanism=self._sasl.mechanism,
                    sasl_plain_username=self._sasl.username,
                    sasl_plain_password=self._sasl.password)

    def __repr__(self):
        user = self._sasl.username if self._sasl else None
        return f"KafkaClientSecurity(protocol={self.security_protocol}, user={user})"


# No SASL and no TLS.
PLAINTEXT_SECURITY = KafkaClientSecurity(None, False)


class KafkaServiceForClients(Protocol):
    """The part of ExternalKafkaCluster the client wrappers depend on, so that
    they can be typed without importing the service module."""

    logger: Logger

    def brokers(self) -> str:
        ...

    def brokers_list(self) -> list[str]:
        ...

    def kafka_client_security(self) -> KafkaClientSecurity:
        ...

    @property
    def request_timeout_sec(self) -> int:
        ...

    @property
    def propagation_timeout_sec(self) -> int:
        ...
