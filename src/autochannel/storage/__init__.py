from autochannel.storage.kv import KVMap, MemoryKVMap, SqliteKVMap, create_kv_map

__all__ = ["KVMap", "MemoryKVMap", "SqliteKVMap", "create_kv_map"]
