#!/usr/bin/env python3
"""
Example usage of the PulsePal driver

This script demonstrates:
- Connecting and reading the firmware version
- Programming a biphasic pulse train on output channel 1
- Uploading a custom pulse train
- Software triggering and aborting
- Applying a YAML configuration
"""

import logging
import sys
import time
from pathlib import Path

from pulsepal import (
    ChannelTriggers,
    CustomTrainId,
    OutputChannel,
    PulsePal,
    PulsePalError,
)
from pulsepal.configuration import configure_all, load_config

CONFIG = Path(__file__).resolve().parent.parent / "config" / "pulsepal.yaml"


def main():
    """Run example stimulation sequence"""

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    port = sys.argv[1] if len(sys.argv) > 1 else "/dev/ttyACM0"

    print("PulsePal - Example Usage")
    print("=" * 60)

    # Context manager opens the port, runs the handshake and disconnects on exit
    with PulsePal(port) as pulse_pal:
        print(f"\nConnected: firmware {pulse_pal.firmware_version}")
        pulse_pal.set_client_id("DEMO")
        pulse_pal.update_display("Python demo", "running")

        # Example 1: 100 ms of 1 kHz biphasic pulses
        print("\n" + "=" * 60)
        print("Example 1: Biphasic train on channel 1")
        ch = OutputChannel.CHANNEL1
        pulse_pal.set_biphasic(ch, True)
        pulse_pal.set_phase1_voltage(ch, 5.0)
        pulse_pal.set_phase2_voltage(ch, -5.0)
        pulse_pal.set_phase1_duration(ch, 0.0002)
        pulse_pal.set_inter_phase_interval(ch, 0.0001)
        pulse_pal.set_phase2_duration(ch, 0.0002)
        pulse_pal.set_inter_pulse_interval(ch, 0.0005)
        pulse_pal.set_pulse_train_duration(ch, 0.1)
        pulse_pal.trigger_output_channels(ChannelTriggers.CHANNEL1)
        print("✓ Channel 1 triggered")

        time.sleep(1)

        # Example 2: custom train on channel 2
        print("\n" + "=" * 60)
        print("Example 2: Custom pulse train on channel 2")
        pulse_pal.send_custom_pulse_train(
            CustomTrainId.CUSTOM_TRAIN_1,
            [0, 0.01, 0.025, 0.05],
            [2.0, 4.0, 6.0, 8.0],
        )
        pulse_pal.set_custom_train_identity(OutputChannel.CHANNEL2, CustomTrainId.CUSTOM_TRAIN_1)
        pulse_pal.set_phase1_duration(OutputChannel.CHANNEL2, 0.001)
        pulse_pal.trigger_output_channels(ChannelTriggers.CHANNEL2)
        print("✓ Channel 2 triggered")

        time.sleep(1)
        pulse_pal.abort_pulse_trains()

        # Example 3: configuration file
        if CONFIG.exists():
            print("\n" + "=" * 60)
            print(f"Example 3: Applying {CONFIG.name}")
            report = configure_all(pulse_pal, load_config(CONFIG))
            for result in report.results:
                print(f"  {result.message}")
            print(f"  {report.summary}")

        print("\n" + "=" * 60)
        print("Example complete!")


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
    except PulsePalError as e:
        print(f"\nError: {e}")
        sys.exit(1)
