"""
Live channel to the broadcast fan-out (python-socketio client)
"""

import logging

import socketio
from socketio.exceptions import ConnectionError as SocketConnectionError

from services.errors import TransportFailure

logger = logging.getLogger(__name__)


def connect_live(base_url, access_token, client=None, wait_timeout=5):
    """
    Open an authenticated Socket.IO connection.

    The returned client is what ProctoringMonitor expects as `socket`:
    it registers handlers with on(), joins rooms with emit() and is closed
    with disconnect().
    """
    client = client or socketio.Client(reconnection=True, logger=False, engineio_logger=False)
    try:
        client.connect(base_url, auth={'token': access_token}, wait_timeout=wait_timeout)
    except SocketConnectionError as e:
        raise TransportFailure(f"Live channel unavailable: {e}") from e
    logger.info(f"Live channel connected to {base_url}")
    return client
