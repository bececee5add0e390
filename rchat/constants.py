# rchat protocol constants (numeric keys and message types)

RCHAT_VERSION = 1
TICKET_VERSION = 1

# Identifier sizes (bytes)
TOPIC_ID_LEN = 32
NODE_ID_LEN = 16  # Reticulum truncated identity hash
PUBLIC_KEY_LEN = 64
FRAME_ID_LEN = 8

# Short rendering of identities (hex characters)
SHORT_ID_CHARS = 10

# Wire message keys
K_V = 0
K_T = 1
K_SRC = 4
K_BODY = 6

# Message types
T_ABOUT_ME = 1
T_CHAT = 20

# Ticket keys
TK_V = 0
TK_TOPIC = 1
TK_NODES = 2

# Node address keys (inside TK_NODES)
N_ID = 0
N_KEY = 1

# Transport frame keys (link payloads)
F_ID = 0
F_PAYLOAD = 1

# Reticulum destination naming: <app>.room.<topic-hex>
ROOM_ASPECT = "room"
