STATE_DIR_NAME = ".questboard"
CONFIG_FILE = "config.yaml"
PERSISTED_STATE_FILE = "board_state.yaml"

# Animation flag lifetimes (milliseconds)
SPAWN_FLAG_MS = 650
PULSE_FLAG_MS = 700
GLOW_FLAG_MS = 1400
CELEBRATE_FLAG_MS = 1400
COLLAPSE_AND_MOVE_DELAY_MS = 600

UNDO_WINDOW_MS = 7000
TOAST_TIMEOUT_MS = 3000
LAYOUT_FRAME_MS = 16  # one animation frame at ~60fps
FOCUS_DELAY_MS = 10

MIN_SIDE_QUEST_WEIGHT = 0.1

FLAG_FULL = "full"
FLAG_SUBTLE = "subtle"
FLAG_SPAWN = "spawn"
FLAG_ACTIVE = "active"

TOAST_INFO = "info"
TOAST_SUCCESS = "success"
TOAST_ERROR = "error"

OPTIMISTIC_ID_PREFIX = "optimistic"

MSG_ADD_QUEST_FAILED = "Failed to add quest"
MSG_DELETE_QUEST_FAILED = "Failed to delete quest"
MSG_UPDATE_QUEST_FAILED = "Failed to update quest"
MSG_QUEST_STATUS_FAILED = "Failed to update quest status"
MSG_ADD_SIDE_QUEST_FAILED = "Failed to add side quest"
MSG_UPDATE_SIDE_QUEST_FAILED = "Failed to update side-quest"
MSG_DELETE_SIDE_QUEST_FAILED = "Failed to delete side quest"
MSG_SIDE_QUEST_STATUS_FAILED = "Failed to update side quest status"
MSG_REFRESH_FAILED = "Failed to refresh quests"
MSG_EMPTY_DESCRIPTION = "Description cannot be empty"
MSG_SIDE_QUEST_UPDATED = "Side-quest updated"

# Store keys that invalidate the rendered layout when they change
LAYOUT_KEYS = frozenset({
    "quests",
    "collapsed_map",
    "selected_quest_id",
    "selected_side_quest",
    "editing_quest",
    "editing_side_quest",
    "adding_side_quest_to",
})
