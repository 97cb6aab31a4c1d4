# Client-visible protocol constants (commands and notice texts)

CMD_QUIT = "/quit"
CMD_USERS = "/users"
CMD_DM = "/dm"

COMMAND_PREFIX = "/"

# Broadcast and DM lines are prefixed with "[HH:MM:SS] " in server local time.
TIME_FORMAT = "%H:%M:%S"

PLACEHOLDER_NAME_PREFIX = "User"
PLACEHOLDER_NAME_MIN = 1000
PLACEHOLDER_NAME_MAX = 9999

WELCOME_BANNER = (
    "╔══════════════════════════════════════════╗",
    "║   Welcome to linechat!                   ║",
    "║   Commands:                              ║",
    "║   /users      - List online users        ║",
    "║   /dm <user> <msg> - Direct message      ║",
    "║   /quit       - Disconnect               ║",
    "╚══════════════════════════════════════════╝",
)
NAME_PROMPT = "Enter your username:"

JOINED_TEMPLATE = "🟢 {name} has joined the chat!"
JOIN_CONFIRM_TEMPLATE = "✅ You joined as: {name}"
LEFT_TEMPLATE = "🔴 {name} has left the chat."
CHAT_TEMPLATE = "{name}: {text}"
DM_FROM_TEMPLATE = "[DM from {name}] {text}"
DM_TO_TEMPLATE = "[DM to {name}] {text}"

NO_USERS = "No users online."
USERS_HEADER_TEMPLATE = "── Online Users ({count}) ──"
USERS_ENTRY_TEMPLATE = "  • {name}"

DM_USAGE = "⚠ Usage: /dm <username> <message>"
DM_SELF = "⚠ You cannot DM yourself."
DM_NOT_FOUND_TEMPLATE = "⚠ User '{name}' not found. Use /users to see who's online."
UNKNOWN_COMMAND = "⚠ Unknown command. Try /users, /dm <user> <msg>, or /quit"
SERVER_FULL = "⚠ Server is full. Try again later."

# Capacity policies for connections beyond max_clients
CAPACITY_QUEUE = "queue"
CAPACITY_REJECT = "reject"
CAPACITY_POLICIES = (CAPACITY_QUEUE, CAPACITY_REJECT)
