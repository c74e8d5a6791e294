#!/usr/bin/env python3
"""
Broadcast Transport for the Greenhouse Hub

This module handles the radio link to the greenhouse nodes:
- Serial connection management for the attached Meshtastic radio
- Broadcast of binary payloads on the private channel and port
- Delivery of received payloads to registered handlers

The medium is addressless from the protocol's point of view: every payload
goes to the broadcast address, delivery and ordering are not guaranteed and
duplicate or corrupted payloads are possible. Filtering happens above this
layer.
"""

import logging
import time
from typing import Callable, List, Optional

from .models import HubConfig, MAX_EVENT_HANDLERS

# Meshtastic broadcast destination
BROADCAST_ADDR = "^all"

PayloadHandler = Callable[[bytes], None]


class BroadcastTransport:
    """
    Base class for a broadcast medium.

    Subclasses implement ``send`` and call ``_dispatch`` for every inbound
    payload.
    """

    def __init__(self, logger: logging.Logger = None):
        self.logger = logger or logging.getLogger("Transport")
        self._handlers: List[PayloadHandler] = []
        self.sent_count = 0
        self.send_failures = 0
        self.received_count = 0

    def connect(self) -> bool:
        """Open the medium. Returns True when ready."""
        return True

    def close(self):
        """Release the medium."""

    def send(self, payload: bytes) -> bool:
        """
        Broadcast a payload to all listeners.

        Fire-and-forget: True only means the medium accepted the payload.
        """
        raise NotImplementedError

    def on_receive(self, handler: PayloadHandler) -> bool:
        """Register a handler called once per inbound payload."""
        if len(self._handlers) >= MAX_EVENT_HANDLERS:
            self.logger.warning("Max receive handlers reached")
            return False
        self._handlers.append(handler)
        return True

    def _dispatch(self, payload: bytes):
        self.received_count += 1
        for handler in self._handlers:
            try:
                handler(payload)
            except Exception as e:
                self.logger.error(f"Receive handler error: {e}")


class MeshtasticTransport(BroadcastTransport):
    """
    Broadcast transport over a Meshtastic radio attached by USB/Serial.

    Payloads are sent to ``^all`` on the configured private channel and
    private port. Received packets from other channels or ports, and echoes
    of the hub's own transmissions, are ignored.
    """

    def __init__(self, config: HubConfig, logger: logging.Logger = None):
        """
        Initialize the transport.

        Args:
            config: Hub configuration.
            logger: Logger instance (creates one if not provided).
        """
        super().__init__(logger or logging.getLogger("Transport"))
        self.config = config
        self.interface = None
        self.my_node_id: str = ""
        self.my_node_info: dict = {}
        self._subscribed = False
        self._on_connection: Optional[Callable] = None
        self._on_disconnect: Optional[Callable] = None

    # -------------------------------------------------------------------------
    # Connection Management
    # -------------------------------------------------------------------------

    def connect(self, on_connection=None, on_disconnect=None) -> bool:
        """
        Connect to the Meshtastic radio.

        Args:
            on_connection: Callback for connection established.
            on_disconnect: Callback for connection lost.

        Returns:
            True if connected successfully.
        """
        try:
            import meshtastic.serial_interface
            from pubsub import pub
        except ImportError:
            self.logger.error("meshtastic package not installed")
            return False

        if self.interface:
            self.interface.close()
            self.interface = None
            time.sleep(1)

        self._on_connection = on_connection or self._on_connection
        self._on_disconnect = on_disconnect or self._on_disconnect

        # Subscribe to events (only once to avoid duplicates)
        if not self._subscribed:
            pub.subscribe(self._handle_packet, "meshtastic.receive")
            pub.subscribe(self._handle_connection, "meshtastic.connection.established")
            pub.subscribe(self._handle_disconnect, "meshtastic.connection.lost")
            self._subscribed = True

        self.my_node_id = ""
        try:
            if self.config.device_port:
                self.logger.info(f"Connecting to {self.config.device_port}...")
                self.interface = meshtastic.serial_interface.SerialInterface(
                    devPath=self.config.device_port
                )
            else:
                self.logger.info("Auto-detecting device...")
                self.interface = meshtastic.serial_interface.SerialInterface()

            # Wait for connection
            start = time.time()
            while not self.my_node_id and (time.time() - start) < self.config.device_timeout:
                time.sleep(0.5)

            if self.my_node_id:
                return True

            self.logger.error("Connection timeout")
            return False

        except Exception as e:
            self.logger.error(f"Connection failed: {e}")
            return False

    def close(self):
        """Disconnect from the radio."""
        if self.interface:
            self.interface.close()
            self.interface = None

    def _handle_connection(self, interface, topic=None):
        """Handle connection established event."""
        try:
            self.my_node_info = interface.getMyNodeInfo()
            user = self.my_node_info.get("user", {})
            self.my_node_id = user.get("id", "")

            self.logger.info(f"Radio: {user.get('longName', 'Unknown')}")
            self.logger.info(f"Node ID: {self.my_node_id}")
            self.logger.info(f"Hardware: {user.get('hwModel', 'Unknown')}")
        except Exception as e:
            self.logger.warning(f"Could not get node info: {e}")

        if self._on_connection:
            self._on_connection()

    def _handle_disconnect(self, interface, topic=None):
        """Handle connection lost event."""
        self.logger.warning("Disconnected from radio")
        if self._on_disconnect:
            self._on_disconnect()

    # -------------------------------------------------------------------------
    # Receive
    # -------------------------------------------------------------------------

    def _handle_packet(self, packet, interface):
        """Filter incoming packets down to our channel and port."""
        try:
            decoded = packet.get("decoded", {})
            from_id = packet.get("fromId")
            channel = packet.get("channel", 0)

            if channel != self.config.private_channel_index:
                return

            if from_id and from_id == self.my_node_id:
                return

            if self._get_port_value(decoded.get("portnum", "")) != self.config.private_port_num:
                return

            payload = decoded.get("payload", b"")
            if isinstance(payload, str):
                payload = payload.encode("latin-1")
            if payload:
                self._dispatch(bytes(payload))

        except Exception as e:
            self.logger.error(f"Error processing packet: {e}")

    @staticmethod
    def _get_port_value(portnum) -> int:
        """Convert portnum to integer value."""
        if isinstance(portnum, int):
            return portnum
        if isinstance(portnum, str):
            if portnum.startswith("PRIVATE_APP"):
                return 256
            try:
                return int(portnum)
            except ValueError:
                pass
        return 0

    # -------------------------------------------------------------------------
    # Send
    # -------------------------------------------------------------------------

    def send(self, payload: bytes) -> bool:
        """
        Broadcast a payload on the private channel.

        Returns:
            True if the radio accepted the payload.
        """
        if not self.interface:
            self.logger.error("Cannot send: not connected")
            self.send_failures += 1
            return False

        try:
            self.interface.sendData(
                payload,
                destinationId=BROADCAST_ADDR,
                portNum=self.config.private_port_num,
                channelIndex=self.config.private_channel_index,
            )
        except Exception as e:
            self.logger.error(f"Send failed: {e}")
            self.send_failures += 1
            return False

        self.sent_count += 1
        return True
