"""
Process memory monitoring for small deployments (e.g. a Raspberry Pi).
Logs usage periodically and backs the /api/system/memory endpoint.
"""
import gc
import threading

import psutil

HIGH_RSS_MB = 500
CRITICAL_RSS_MB = 800

_thread = None
_stop_event = threading.Event()


def _mb(value: int) -> int:
    return round(value / 1024 / 1024)


def get_memory_snapshot() -> dict:
    """Current memory usage in MB"""
    info = psutil.Process().memory_info()
    return {
        'rss': _mb(info.rss),
        'vms': _mb(info.vms),
        'gcObjects': len(gc.get_objects()),
    }


def force_garbage_collection() -> int:
    """Run a full collection, returns the number of unreachable objects found"""
    print('[Memory] Forcing garbage collection...')
    collected = gc.collect()
    print(f'[Memory] Garbage collection completed ({collected} objects)')
    return collected


def log_memory_usage():
    try:
        snapshot = get_memory_snapshot()
    except psutil.Error as e:
        print(f'[Memory] Failed to check memory usage: {e}')
        return None

    rss = snapshot['rss']
    print(f"[Memory] Current usage: rss={rss}MB vms={snapshot['vms']}MB")
    if rss > CRITICAL_RSS_MB:
        print(f'[Memory] 🚨 CRITICAL MEMORY USAGE: {rss}MB - system may become unstable')
    elif rss > HIGH_RSS_MB:
        print(f'[Memory] ⚠️  HIGH MEMORY USAGE: {rss}MB - live streams may be consuming excessive memory')
    return snapshot


def _monitor_loop(interval: int):
    while not _stop_event.wait(interval):
        log_memory_usage()


def start(interval: int = 300):
    """Start periodic memory logging in a daemon thread"""
    global _thread
    if _thread is not None and _thread.is_alive():
        print('[Memory] Memory monitoring already started')
        return

    print(f'[Memory] Starting memory monitoring ({interval}s interval)')
    log_memory_usage()
    _stop_event.clear()
    _thread = threading.Thread(target=_monitor_loop, args=(interval,), daemon=True)
    _thread.start()


def stop():
    """Stop the monitor thread"""
    global _thread
    if _thread is None:
        return
    _stop_event.set()
    _thread.join(timeout=2)
    _thread = None
    print('[Memory] Memory monitoring stopped')
