"""Calendar sync, channel lifecycle, booking admission and provisioning services."""
