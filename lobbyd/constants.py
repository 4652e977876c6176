# Lobby protocol constants (envelope keys and message types)

# Envelope keys
K_TYPE = "type"

# Inbound message types
T_JOIN = "join"
T_CHAT_MESSAGE = "chatMessage"
T_ADMIN_MESSAGE = "adminMessage"
T_BAN_USER = "banUser"
T_UNBAN_USER = "unbanUser"
T_CLEAR_CHAT = "clearChat"
T_FEATURE_REQUEST = "featureRequest"
T_DELETE_FEATURE_REQUEST = "deleteFeatureRequest"

# Outbound message types
T_JOIN_SUCCESS = "joinSuccess"
T_CONNECTION_DENIED = "connectionDenied"
T_BANNED = "banned"
T_CHAT_HISTORY = "chatHistory"
T_NEW_MESSAGE = "newMessage"
T_UPDATE_USER_LISTS = "updateUserLists"
T_ALERT = "alert"
T_UPDATE_FEATURE_REQUESTS = "updateFeatureRequests"

# Payload keys
P_USER_NAME = "userName"
P_PASSWORD = "password"
P_USER_ID = "userId"
P_TEXT = "text"
P_REQUEST_ID = "requestId"

# connectionDenied reasons
R_NAME_TAKEN = "name_taken"
R_INCORRECT_PASSWORD = "incorrect_password"
R_INVALID_NAME = "invalid_name"
R_ALREADY_JOINED = "already_joined"

# WebSocket close codes
CLOSE_BANNED = 4003
CLOSE_AUTH_FAILED = 4001

DEFAULT_ADMIN_NAME = "Admin"
NICK_MAX_CHARS = 32
