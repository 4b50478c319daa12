# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

'''
=============================================================================
 -------- OPERATOR DEFAULTS - READ BEFORE EDITING --------
=============================================================================

Values below are defaults for the operator tool only. None of them are
consensus-relevant: the node binary owns chain rules, this tool only writes
the handful of config keys it manages and orchestrates the node lifecycle.

  1) MODE & APPLICATION     - runtime profile, app dirs
  2) CHAIN DEFAULTS         - chain id, home, genesis domain, denom
  3) HOME LAYOUT            - file and folder names under <home>
  4) SNAPSHOT               - snapshot source, transfer, retry
  5) RPC & BOOTSTRAP        - timeouts, trust params, state sync
  6) PEER REFRESH           - periodic persistent_peers refresh
  7) DASHBOARD              - refresh cadence, caches, log viewer
  8) SELF UPDATE            - release index, assets, cache
  9) LOGGING                - dev/prod logging profiles

Environment overrides are resolved in utils/settings.py, not here.

=============================================================================
'''

import os
import appdirs


# =============================================================================
# 1. MODE & APPLICATION
# =============================================================================
# ---- RUNTIME PROFILE ----
MODE   = os.environ.get("PUSH_VALIDATOR_MODE", "prod")  # "dev" for verbose console logging, "prod" for operators
IS_DEV = (MODE.lower() == "dev")  # cached boolean to simplify dev/prod toggles

# ---- APP METADATA ----
APP_NAME     = "push-validator"  # name used for per-user directories
APP_AUTHOR   = "PushChain"  # vendor string passed into platform dir helpers
TOOL_NAME    = "push-validator"  # binary name of this tool (self-update asset prefix)
TOOL_LOG_DIR = appdirs.user_log_dir(APP_NAME, APP_AUTHOR)  # OS-specific folder for the tool's own log


# =============================================================================
# 2. CHAIN DEFAULTS
# =============================================================================
# ---- CHAIN IDENTITY ----
DEFAULT_CHAIN_ID       = "push_42101-1"  # testnet chain id written by `init`
DEFAULT_GENESIS_DOMAIN = "donut.rpc.push.org"  # RPC host serving genesis, net_info and status
DEFAULT_DENOM          = "upc"  # staking / fee denomination
DEFAULT_MONIKER        = "push-validator"  # node moniker when none is given

# ---- LOCAL NODE ----
DEFAULT_HOME_DIR        = os.path.join(os.path.expanduser("~"), ".pchain")  # node home directory
DEFAULT_NODE_BIN        = "pchaind"  # node binary resolved from PATH
DEFAULT_RPC_LOCAL       = "http://127.0.0.1:26657"  # local CometBFT RPC endpoint
DEFAULT_KEYRING_BACKEND = "test"  # keyring backend passed to key/tx commands
DEFAULT_P2P_PORT        = 26656  # port appended to peer addresses


# =============================================================================
# 3. HOME LAYOUT
# =============================================================================
# ---- FOLDERS ----
CONFIG_DIRNAME         = "config"  # config.toml, app.toml, genesis.json
DATA_DIRNAME           = "data"  # chain state owned by the node at runtime
LOGS_DIRNAME           = "logs"  # node log and refresh logs
BACKUPS_DIRNAME        = "backups"  # tar.gz backups produced by `backup`
SNAPSHOT_CACHE_DIRNAME = "snapshot-cache"  # content-addressed snapshot cache

# ---- FILES ----
CONFIG_FILENAME       = "config.toml"  # node config rewritten by the tool
APP_CONFIG_FILENAME   = "app.toml"  # node app config (backup only)
GENESIS_FILENAME      = "genesis.json"  # genesis fetched during bootstrap
ADDRBOOK_FILENAME     = "addrbook.json"  # p2p address book kept across reset
PVS_FILENAME          = "priv_validator_state.json"  # signing state preserved across snapshot installs
PID_FILENAME          = "pchaind.pid"  # pid file written by the supervisor
NODE_LOG_FILENAME     = "pchaind.log"  # node stdout/stderr log
UPDATE_CHECK_FILENAME = ".update-check"  # self-update cache (JSON)
STATE_SYNC_MARKER     = ".initial_state_sync"  # sentinel written on first bootstrap

# ---- SNAPSHOT CACHE FILES ----
SNAPSHOT_TARBALL_NAME  = "latest.tar.lz4"  # cached archive
SNAPSHOT_CHECKSUM_NAME = SNAPSHOT_TARBALL_NAME + ".sha256"  # stored checksum of the cached archive
SNAPSHOT_PARTIAL_NAME  = SNAPSHOT_TARBALL_NAME + ".partial"  # in-progress download
SNAPSHOT_SIDECAR_NAME  = SNAPSHOT_PARTIAL_NAME + ".sha256"  # remote checksum the partial belongs to

# ---- DEFAULT PRIV VALIDATOR STATE ----
PVS_EMPTY_JSON = '{\n  "height": "0",\n  "round": 0,\n  "step": 0\n}\n'  # fresh signing state


# =============================================================================
# 4. SNAPSHOT
# =============================================================================
# ---- SOURCE ----
DEFAULT_SNAPSHOT_URL = "https://snapshots.donut.push.org"  # base URL hosting latest.tar.lz4(.sha256)

# ---- TRANSFER ----
SNAPSHOT_CHUNK_BYTES     = 1024 * 1024  # chunk size when streaming snapshot data
SNAPSHOT_HASH_CHUNK      = 4 * 1024 * 1024  # chunk size when hashing files
SNAPSHOT_HTTP_TIMEOUT    = 60  # socket timeout for snapshot requests (seconds)
SNAPSHOT_USER_AGENT      = "push-validator-snapshot/1.0"  # UA string used when fetching snapshots
SNAPSHOT_PROGRESS_BYTES  = 8 * 1024 * 1024  # emit download progress at most every N bytes

# ---- RETRY ----
SNAPSHOT_MAX_ATTEMPTS     = 4  # initial attempt + 3 retries
SNAPSHOT_BACKOFF_INITIAL  = 2.0  # first backoff wait (seconds), doubles per retry
SNAPSHOT_BACKOFF_MAX      = 30.0  # backoff ceiling (seconds)

# ---- EXTRACT ----
SNAPSHOT_EXTRACT_FACTOR  = 4  # disk needed on extract = factor x tarball size (lz4 ratio)
SNAPSHOT_PRESENT_MIN     = 1024 * 1024  # a db dir larger than this counts as restored state
SNAPSHOT_PRESENT_DBS     = ("application.db", "blockstore.db", "state.db")  # dbs probed by is_snapshot_present


# =============================================================================
# 5. RPC & BOOTSTRAP
# =============================================================================
# ---- RPC CLIENT ----
RPC_TIMEOUT        = 5.0  # default per-call timeout (seconds)
RPC_STATUS_TIMEOUT = 2.5  # quick status probe used by status/doctor (seconds)
RPC_USER_AGENT     = "push-validator/1.0"  # UA string for JSON-RPC calls

# ---- TRUST PARAMETERS ----
TRUST_INTERVAL        = 1000  # snapshot interval in blocks
TRUST_OFFSETS         = (1, 2, 3, 4, 5)  # interval offsets tried in order
TRUST_MIN_LATEST      = 2  # floor applied to the remote latest height
TRUST_RETRY_ATTEMPTS  = 3  # inner retry for transient non-200 responses
TRUST_RETRY_STEP      = 0.1  # linear backoff step (seconds): 100/200/300 ms
TRUST_PERIOD          = "336h0m0s"  # light-client trust period written to [statesync]

# ---- BOOTSTRAP ----
BOOTSTRAP_HTTP_TIMEOUT = 15.0  # timeout for genesis / net_info / status fetches
BOOTSTRAP_PEER_CAP     = 4  # max peers taken from net_info
PROBE_TIMEOUT          = 6.0  # JSON-RPC reachability probe timeout (seconds)
PROBE_ATTEMPTS         = 2  # attempts per probed RPC server
PROBE_RETRY_DELAY      = 0.3  # wait between probe attempts (seconds)
BOOTSTRAP_SEED_HOSTS   = (  # fallback seed hosts when net_info yields nothing
    "rpc-testnet-donut-node1.push.org",
    "rpc-testnet-donut-node2.push.org",
)
BOOTSTRAP_SNAPSHOT_RPC = "https://rpc-testnet-donut-node2.push.org"  # primary snapshot RPC used for trust params
BOOTSTRAP_FALLBACK_RPC = "https://rpc-testnet-donut-node1.push.org:443"  # second state-sync witness
BOOTSTRAP_FULLNODE_PEERS = (  # known full nodes used when no peer can be discovered
    "6751a6539368608a65512d1a4b7ede4a9cd5004f@136.112.142.137:26656",
    "374573900e4365bea5d946dd69c7343e56e4f375@34.72.243.200:26656",
    "deda68a955b352bb201ab54422de1ab35db46652@136.113.195.0:26656",
)

# ---- STATE SYNC TUNING ----
STATESYNC_CHUNK_FETCHERS   = 12  # parallel chunk fetchers
STATESYNC_CHUNK_TIMEOUT    = "15m0s"  # chunk request timeout
STATESYNC_DISCOVERY_TIME   = "90s"  # snapshot discovery window


# =============================================================================
# 6. PEER REFRESH
# =============================================================================
PEER_REFRESH_INTERVAL = 300.0  # seconds between refreshes
PEER_REFRESH_MIN      = 3  # only rewrite when at least this many peers are found
PEER_REFRESH_MAX      = 10  # cap on persistent_peers entries
PEER_REFRESH_LOG      = "peer-refresh.log"  # log file under <home>/logs


# =============================================================================
# 7. DASHBOARD
# =============================================================================
# ---- CADENCE ----
DASH_REFRESH_INTERVAL = 1.0  # tick interval while catching up (seconds)
DASH_INSYNC_INTERVAL  = 5.0  # tick interval once in sync (seconds)
DASH_RPC_TIMEOUT      = 5.0  # fetch deadline, capped at 2 x refresh interval
DASH_STALE_AFTER      = 10.0  # mark data stale when last OK fetch is older
DASH_SPINNER_INTERVAL = 0.1  # spinner redraw interval (seconds)
DASH_INPUT_POLL       = 0.05  # terminal key poll timeout (seconds)

# ---- CACHES ----
DASH_VERSION_TTL     = 300.0  # cached `<bin> version` lifetime (seconds)
VALIDATOR_CACHE_TTL  = 30.0  # validator list / my validator cache (seconds)
REWARDS_CACHE_TTL    = 30.0  # per-validator rewards cache (seconds)
REWARDS_TIMEOUT      = 15.0  # per-validator rewards fetch timeout (seconds)
VALIDATORS_PAGE_SIZE = 5  # rows per validators list page

# ---- LOG VIEWER ----
LOG_RING_SIZE       = 500  # lines retained by the log viewer
LOG_BACKLOG_LINES   = 100  # backlog loaded when the tail starts
LOG_VISIBLE_LINES   = 8  # lines shown in the log panel
LOG_MAX_LINE_BYTES  = 512 * 1024  # longest accepted log line
LOG_WAIT_INTERVAL   = 1.0  # poll interval while the log file is missing
LOG_EOF_SLEEP       = 0.1  # sleep on EOF while following
LOG_ERROR_BACKOFF   = 1.0  # restart delay after a read error


# =============================================================================
# 8. SELF UPDATE
# =============================================================================
UPDATE_REPO           = "pushchain/push-validator-cli"  # GitHub repo publishing releases
UPDATE_RELEASE_URL    = "https://api.github.com/repos/" + UPDATE_REPO + "/releases/latest"  # latest release index
UPDATE_TAG_URL        = "https://api.github.com/repos/" + UPDATE_REPO + "/releases/tags/{tag}"  # release by tag
UPDATE_ACCEPT         = "application/vnd.github.v3+json"  # Accept header for the release API
UPDATE_USER_AGENT     = "push-validator-cli"  # UA required by the GitHub API
UPDATE_ASSET_TEMPLATE = "{tool}_{version}_{os}_{arch}.tar.gz"  # release asset naming convention
UPDATE_CHECKSUMS_NAME = "checksums.txt"  # checksum manifest asset
UPDATE_CACHE_TTL      = 600.0  # freshness of .update-check (seconds)
UPDATE_HTTP_TIMEOUT   = 30.0  # timeout for release index requests (seconds)
UPDATE_DOWNLOAD_TIMEOUT = 300.0  # socket timeout for asset downloads (seconds)


# =============================================================================
# 9. LOGGING
# =============================================================================
# ---- BASE OUTPUT ----
LOG_PATH             = os.path.join(TOOL_LOG_DIR, "push-validator.log")  # tool log path before format override
LOG_SHOW_THREAD      = False  # include the thread name (fetch, tailer, sampler) in each line
LOG_RATE_LIMIT_KEYS  = 2048  # distinct messages remembered by the rate limiter before pruning

# ---- MODE PROFILES ----
if IS_DEV:
    # ---- DEV PROFILE ----
    LOG_LEVEL                   = "TRACE"  # very verbose logging for development
    LOG_FORMAT                  = "plain"  # plain text logs ease local debugging
    LOG_TO_CONSOLE              = True  # mirror logs to stderr for dev loops
    LOG_RATE_LIMIT_SECONDS      = 0.0  # disable console throttling in dev
    LOG_FILE_RATE_LIMIT_SECONDS = 0.0  # disable file throttling in dev
    LOG_ROTATE_MAX_BYTES        = 5_000_000  # rollover log files after ~5MB in dev
    LOG_BACKUP_COUNT            = 3  # retain a few rotated dev log files
else:
    # ---- PROD PROFILE ----
    LOG_LEVEL                   = "INFO"  # balanced verbosity for operators
    LOG_FORMAT                  = "plain"  # operators read these logs by hand
    LOG_TO_CONSOLE              = False  # console belongs to the CLI output and the dashboard
    LOG_RATE_LIMIT_SECONDS      = 2.0  # throttle console spam in prod
    LOG_FILE_RATE_LIMIT_SECONDS = 1.0  # throttle file spam in prod
    LOG_ROTATE_MAX_BYTES        = 10_000_000  # rollover log files after ~10MB in prod
    LOG_BACKUP_COUNT            = 7  # keep more history for support bundles

# ---- LOG PATH NORMALIZATION ----
if str(LOG_FORMAT).lower().strip() == "json":
    LOG_PATH = os.path.join(TOOL_LOG_DIR, "push-validator.jsonl")  # JSON lines extension to aid parsing
