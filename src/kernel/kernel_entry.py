# src/kernel/kernel_entry.py

import sys

from src.kernel.channels.kernel_config import KernelConfig
from src.kernel.kernel_app import KernelApp
from src.kernel.logging.console_log_sink import ConsoleLogSink


def main(argv=None) -> int:
    config = KernelConfig.from_args(argv)

    app = KernelApp(config)
    app.log_manager.register_sink(ConsoleLogSink())
    return app.run()


if __name__ == "__main__":
    sys.exit(main())
