from mysql_wire.types import Capabilities

# Largest payload of a single frame. Longer payloads are split.
MAX_FRAME_SIZE = 0xFFFFFF

# Sent in the handshake response as the largest packet we accept
CLIENT_MAX_PACKET_SIZE = 0xFFFFFF

# Frames shorter than this are sent uncompressed
MIN_COMPRESS_LENGTH = 50

LOCAL_INFILE_CHUNK_SIZE = 8192

MIN_SERVER_VERSION = (5, 0, 0)

# Fabric (cluster router) gateways report their own version scheme
FABRIC_SUFFIX = "fabric"

NATIVE_PASSWORD_PLUGIN = "mysql_native_password"
KERBEROS_PLUGIN = "authentication_kerberos_client"

# Requested regardless of what the server advertises
ALWAYS_REQUESTED = (
    Capabilities.CLIENT_LOCAL_FILES
    | Capabilities.CLIENT_PROTOCOL_41
    | Capabilities.CLIENT_TRANSACTIONS
    | Capabilities.CLIENT_MULTI_RESULTS
    | Capabilities.CLIENT_LONG_PASSWORD
)

# Requested whenever the server advertises them
REQUESTED_IF_ADVERTISED = (
    Capabilities.CLIENT_LONG_FLAG
    | Capabilities.CLIENT_SECURE_CONNECTION
    | Capabilities.CLIENT_PS_MULTI_RESULTS
    | Capabilities.CLIENT_PLUGIN_AUTH
    | Capabilities.CLIENT_CONNECT_ATTRS
    | Capabilities.CLIENT_CAN_HANDLE_EXPIRED_PASSWORDS
)
