"""
Storage Encryption Benchmark CLI.

Usage:
    ribbon-bench

Or run directly:
    python -m ribbon_core.benchmark

PostgreSQL setup (optional):
    1. Run schema: psql -U postgres -f sql/schema.sql
    2. Set RIBBON_DATABASE_URL environment variable or .env file

Without RIBBON_DATABASE_URL the in-memory backend is measured.
"""

from __future__ import annotations

import asyncio
import time

import asyncpg

from ribbon_core.backends import InMemoryKeyValueStore, KeyValueBackend, PostgresKeyValueStore
from ribbon_core.config import Settings
from ribbon_core.crypto import KeystreamCipher, SecureKey
from ribbon_core.envelope import EncryptedValueCodec
from ribbon_core.error_logger import ErrorLogger
from ribbon_core.key_manager import KeyManager
from ribbon_core.keys import Sensitivity, SensitivityClassifier
from ribbon_core.secure_store import InMemorySecureStore
from ribbon_core.storage import StorageService

BENCH_NAMESPACE = "benchmark"


def _rate(count: int, seconds: float) -> str:
    return f"{count / seconds:.2f}" if seconds > 0 else "inf"


def _section(title: str) -> None:
    print("+" + "-" * 68 + "+")
    print(f"|  {title}".ljust(69) + "|")
    print("+" + "-" * 68 + "+")


async def run_benchmark() -> None:
    """Run the storage encryption benchmark."""
    print("=== Storage Encryption Benchmark ===\n")

    settings = Settings.from_env()

    pool = None
    backend: KeyValueBackend
    if settings.database_url:
        pool = await asyncpg.create_pool(settings.database_url)
        backend = PostgresKeyValueStore(pool, BENCH_NAMESPACE)
        await backend.clear()
        print(f"[STARTUP] PostgreSQL backend, namespace '{BENCH_NAMESPACE}' truncated")
    else:
        backend = InMemoryKeyValueStore()
        print("[STARTUP] RIBBON_DATABASE_URL not set, using in-memory backend")

    try:
        user_input = input("Enter number of values to test (default: 250): ").strip()
        test_quantity = int(user_input) if user_input else 250
    except ValueError:
        test_quantity = 250
    print(f"Testing with {test_quantity} values\n")

    keys = [f"@ribbon/bench_{i}" for i in range(test_quantity)]
    classifier = SensitivityClassifier({key: Sensitivity.SENSITIVE for key in keys})
    error_logger = ErrorLogger()
    codec = EncryptedValueCodec(classifier, KeyManager(InMemorySecureStore()), error_logger, strict=True)
    storage = StorageService(backend, codec, classifier, error_logger)
    await storage.initialize()

    print("=" * 70)
    print("                    BENCHMARK START")
    print("=" * 70 + "\n")

    # ========================================================================
    # Demo 1: Raw keystream cipher
    # ========================================================================
    _section("Demo 1: Keystream Cipher (1 KiB payload)")

    key = SecureKey.generate()
    payload = b"x" * 1024

    encrypt_start = time.perf_counter()
    sealed = [KeystreamCipher.encrypt(key, payload) for _ in range(test_quantity)]
    encrypt_duration = time.perf_counter() - encrypt_start

    decrypt_start = time.perf_counter()
    for item in sealed:
        KeystreamCipher.decrypt(key, item.ciphertext, item.iv)
    decrypt_duration = time.perf_counter() - decrypt_start

    print(f"[PERF] Encryption: {encrypt_duration * 1000:.3f}ms | Rate: {_rate(test_quantity, encrypt_duration)} ops/sec")
    print(f"[PERF] Decryption: {decrypt_duration * 1000:.3f}ms | Rate: {_rate(test_quantity, decrypt_duration)} ops/sec\n")

    # ========================================================================
    # Demo 2: Encrypted writes
    # ========================================================================
    _section(f"Demo 2: Encrypted Writes ({test_quantity} keys)")

    value = {"id": "1", "name": "Mug", "interests": ["coffee", "ceramics"], "budget": 40}

    write_start = time.perf_counter()
    for i, storage_key in enumerate(keys):
        await storage.set(storage_key, value)
        if (i + 1) % 50 == 0 or (i + 1) == test_quantity:
            print(f"  Progress: {i + 1}/{test_quantity}")
    write_duration = time.perf_counter() - write_start

    print(f"[PERF] Time: {write_duration * 1000:.3f}ms | Rate: {_rate(test_quantity, write_duration)} ops/sec\n")

    # ========================================================================
    # Demo 3: Encrypted reads
    # ========================================================================
    _section(f"Demo 3: Encrypted Reads ({test_quantity} keys)")

    read_start = time.perf_counter()
    for storage_key in keys:
        if await storage.get(storage_key) != value:
            print(f"[ERROR] Value mismatch for {storage_key}")
    read_duration = time.perf_counter() - read_start

    print(f"[PERF] Time: {read_duration * 1000:.3f}ms | Rate: {_rate(test_quantity, read_duration)} ops/sec\n")

    # ========================================================================
    # Demo 4: Key rotation with re-encryption
    # ========================================================================
    _section("Demo 4: Key Rotation (re-encrypts every value)")

    rotate_start = time.perf_counter()
    rotation = await storage.rotate_encryption_key()
    rotate_duration = time.perf_counter() - rotate_start

    verified = await storage.get(keys[0]) == value
    print(f"[OK] Key rotated: {rotation}")
    print(f"[{'OK' if verified else 'ERROR'}] Values readable under the new key")
    print(f"[PERF] Time: {rotate_duration * 1000:.3f}ms | Rate: {_rate(test_quantity, rotate_duration)} values/sec\n")

    # ========================================================================
    # Summary
    # ========================================================================
    print("=" * 70)
    print("                    BENCHMARK SUMMARY")
    print("=" * 70 + "\n")

    size = await storage.get_storage_size()
    print(f"Stored keys: {size.keys} ({size.approx_size_mb:.3f} MB)")
    print(f"Errors logged: {error_logger.get_error_stats().total}")

    print("\nTest Configuration:")
    print(f"  - Total values tested: {test_quantity}")
    print("  - Crypto: SHA-256 keystream, 16-byte IV per value")
    print(f"  - Backend: {'PostgreSQL' if pool is not None else 'in-memory'}")

    print("\n" + "=" * 70)
    print("                    BENCHMARK COMPLETE")
    print("=" * 70 + "\n")

    await storage.wipe()
    if pool is not None:
        await pool.close()


def main() -> None:
    """CLI entry point for ribbon-bench command."""
    asyncio.run(run_benchmark())


if __name__ == "__main__":
    main()
