# config/engine_settings.py
# Execution-pool defaults

import multiprocessing as mp

# Leave one core for the parent process
DEFAULT_WORKERS = max(1, mp.cpu_count() - 1)

# Each worker gets several chunks so one slow chunk doesn't idle the pool
CHUNKS_PER_WORKER = 4

# Seconds; None = wait for every chunk
DEFAULT_TIMEOUT = None

# How often the collector wakes up to check the cancel token / deadline
POLL_INTERVAL = 0.25

# None = platform default start method
START_METHOD = None

DEFAULT_RUNS = 1000
