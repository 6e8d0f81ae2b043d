# ============================================================================
# MESSAGING CONFIGURATION
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Core - Service Bus configuration
# PURPOSE: Centralize messaging configuration for async dispatch
# CREATED: 14 OCT 2026
# ============================================================================
"""
Messaging Configuration

Configuration for the Azure Service Bus namespace that carries
asynchronously dispatched operations. Queue names are not fixed here:
each message goes to the queue the orchestrator resolved for it.
Supports both connection string and managed identity authentication.
"""

import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class MessagingConfig:
    """
    Configuration for Azure Service Bus messaging.

    Loaded from environment variables.
    """
    # Connection - either connection_string OR fully_qualified_namespace
    connection_string: Optional[str] = None
    fully_qualified_namespace: Optional[str] = None

    # Managed identity settings
    use_managed_identity: bool = False
    managed_identity_client_id: Optional[str] = None

    # Timeouts
    send_timeout_seconds: int = 30
    receive_timeout_seconds: int = 60

    # Message TTL when an operation declares no timeout
    default_ttl_seconds: int = 86400

    @classmethod
    def from_env(cls) -> "MessagingConfig":
        """
        Load configuration from environment variables.

        For connection string auth:
            SEQUENCER_SERVICEBUS_CONNECTION_STRING: Service Bus connection string

        For managed identity auth:
            USE_MANAGED_IDENTITY: Set to "true" to use managed identity
            SEQUENCER_SERVICEBUS_FQDN: Fully qualified namespace
            AZURE_CLIENT_ID: Optional client ID for user-assigned managed identity
        """
        use_mi = os.environ.get("USE_MANAGED_IDENTITY", "").lower() == "true"

        if use_mi:
            fqdn = os.environ.get("SEQUENCER_SERVICEBUS_FQDN")
            if not fqdn:
                raise ValueError(
                    "SEQUENCER_SERVICEBUS_FQDN required when USE_MANAGED_IDENTITY=true"
                )
            return cls(
                use_managed_identity=True,
                fully_qualified_namespace=fqdn,
                managed_identity_client_id=os.environ.get("AZURE_CLIENT_ID"),
            )

        connection_string = os.environ.get("SEQUENCER_SERVICEBUS_CONNECTION_STRING")
        if not connection_string:
            raise ValueError(
                "SEQUENCER_SERVICEBUS_CONNECTION_STRING required (or set USE_MANAGED_IDENTITY=true)"
            )
        return cls(connection_string=connection_string)
