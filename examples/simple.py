import asyncio
import logging
import tempfile
from pathlib import Path

from watchkeeper.config import Settings, build_storage
from watchkeeper.errors import WatchkeeperError
from watchkeeper.scheduler.registry import JobRegistry
from watchkeeper.services.backup import BackupService
from watchkeeper.services.uptime import UptimeService

logging.basicConfig(level=logging.INFO)

workdir = Path(tempfile.mkdtemp(prefix="watchkeeper-"))
source = workdir / "world"
source.mkdir()
(source / "level.dat").write_text("spawn=0,64,0")


async def get_user_input():
    return await asyncio.to_thread(input, "> ")


async def console(backups: BackupService, uptime: UptimeService):
    print("Commands: backup <name> <interval>, monitor <host> <port> <minutes>, run <instance id>, status, exit")
    while True:
        words = (await get_user_input()).split()
        if not words:
            continue
        command = words[0].lower()
        if command == "exit":
            break

        try:
            if command == "backup" and len(words) == 3:
                instance = await backups.create_instance({
                    "name": words[1],
                    "sourcePath": str(source),
                    "targetPath": str(workdir / "backups"),
                    "interval": words[2],
                    "maxBackups": 3,
                })
                print(f"Instance created: {instance.id}")
            elif command == "monitor" and len(words) == 4:
                monitor = await uptime.add_monitor({
                    "name": words[1], "host": words[1], "port": words[2], "type": "tcp", "interval": words[3],
                })
                print(f"Monitor created: {monitor.id}")
            elif command == "run" and len(words) == 2:
                instance = await backups.perform_backup(words[1])
                print(f"{len(instance.backups)} backups, latest {instance.backups[-1].file_name}")
            elif command == "status":
                for instance in await backups.list_instances():
                    print(f"{instance.id} {instance.name} [{instance.interval}] {len(instance.backups)} backups")
                for monitor in await uptime.get_all_monitors():
                    print(f"{monitor.id} {monitor.host}:{monitor.port} {monitor.current_status.status.value}")
            else:
                print("Unknown command.")
        except WatchkeeperError as e:
            print(f"Error: {e}")


async def main():
    settings = Settings(data_dir=str(workdir / "data"))
    registry = JobRegistry()
    storage = await build_storage(settings)
    backups = BackupService(registry, storage)
    uptime = UptimeService(registry, storage)
    await backups.initialize()
    await uptime.initialize()
    await console(backups, uptime)
    await registry.stop()


if __name__ == "__main__":
    asyncio.run(main())
