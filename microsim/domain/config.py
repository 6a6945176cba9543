# Simulation Configuration Defaults

# Tick
DT = 0.1                     # seconds per tick
DEFAULT_SEED = 42
V_MAX = 50.0                 # hard velocity clamp, m/s
LOOKAHEAD_DISTANCE = 200.0   # how far leader search follows successor lanes, m

# Driver (IDM / MOBIL)
DESIRED_VELOCITY = 30.0
MIN_GAP = 2.0
TIME_HEADWAY = 1.5
MAX_ACCELERATION = 1.0
COMFORTABLE_DECELERATION = 1.5
MAX_DECELERATION = 9.0       # emergency braking bound
POLITENESS = 0.2
SAFE_BRAKING = 4.0
LANE_CHANGE_THRESHOLD = 0.2
CRITICAL_GAP = 5.0           # base critical gap, s
VEHICLE_LENGTH = 4.5

# Lane changing
LANE_CHANGE_COOLDOWN_TICKS = 30
NO_CHANGE_ZONE = 20.0        # no lane changes this close to a lane end, m

# Gap acceptance
URGENCY_DECAY = 0.1          # lambda, 1/s
CRITICAL_GAP_FLOOR = 2.0     # s
LOGIT_BETA = 2.0
MIN_SAFE_DISTANCE = 3.0      # conflicting vehicle this close to its line => no gap, m
APPROACH_DISTANCE = 50.0     # gating zone before a stop line, m
MIN_CONFLICT_SPEED = 0.1     # avoids division by zero in time-to-arrival, m/s

# Signals
YELLOW_TIME = 3.0
ALL_RED_TIME = 2.0
MIN_GREEN_TIME = 5.0
MAX_GREEN_TIME = 60.0
GAP_OUT_TIMEOUT = 3.0
DETECTOR_LENGTH = 30.0

# Collision guard
GUARD_MARGIN = 0.01          # m kept between bumpers when the guard engages
