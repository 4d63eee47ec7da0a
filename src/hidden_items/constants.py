# Group used when a caller does not name one.
DEFAULT_GROUP = "HIDDEN_ITEM_MANAGER_DEFAULT"

# Carriers are parked far outside any room so they are never seen or touched.
CARRIER_PARK_POSITION = (-1000.0, -1000.0)
ZERO_VECTOR = (0.0, 0.0)

# Consecutive respawn attempts before an instance is given up on.
MAX_RESPAWN_ATTEMPTS = 10

# An owner that has not updated within this many ticks is considered inactive
# (for example the hidden half of a flipping character).
OWNER_INACTIVE_TICKS = 1

DEFAULT_MANAGER_NAME = "HiddenItemManager"

# Per-entity scratch data keys. The host never persists scratch data.
DATA_MANAGED = "hidden_item_manager"                 # set by every engine instance
DATA_TAG = "hidden_item_manager_tag"                 # identifies the owning engine instance
DATA_CLAIMED_TICK = "hidden_item_manager_claimed"    # last tick an instance claimed the carrier
DATA_SEVERED_OWNER = "hidden_item_manager_owner"     # owner cached during ownership severing
DATA_LAST_OWNER_UPDATE = "hidden_item_manager_last_update"

# Host item ids with special handling.
OWNERSHIP_SEVERING_ITEM_ID = 536   # consumes familiars linked to the user
GLOBAL_RESET_ITEM_ID = 622         # wipes every granted item
COSTUME_ITEM_ID = 590              # applies a cosmetic costume to the owner
COSTUME_NAME = "mars"
