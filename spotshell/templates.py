"""Text templates for generated configuration and instance boot scripts."""

CONFIG_TEMPLATE = """\
# spotshell configuration
# Values under "defaults" override the built-in defaults; command-line flags
# override both. Strings may reference entries under "vars" with ${name}.

vars:
  prefix: spotshell-admin

defaults:
  region: us-east-1
  instance_type: t3.small
  # Spot bid ceiling and pre-launch price guard, USD per hour. When unset,
  # the bid is 1.5x the current spot price, or 0.08 without price history.
  # max_cost: 0.08

  key_name: ${prefix}-key
  key_dir: ~/.ssh
  key_rotation_days: 90

  security_group_name: ${prefix}-sg
  admin_port: 22

  role_name: ${prefix}-role
  instance_profile_name: ${prefix}-role

  ssh_username: ec2-user
  # ami_id: ami-0123456789abcdef0
  ami_name_pattern: al2023-ami-2023.*-x86_64

  # Readiness ceilings in seconds
  spot_fulfillment_timeout: 300
  instance_running_timeout: 120
  ssh_ready_timeout: 180

  # Power the instance off when no SSH session is left
  self_terminate: true
"""

USER_DATA_TEMPLATE = """\
#!/bin/bash
cat > /usr/local/bin/spotshell-watch.sh << 'MONITOR'
#!/bin/bash
seen_session=0
started=$(date +%s)
while true; do
    if pgrep -f "sshd.*@pts" >/dev/null; then
        seen_session=1
    elif [ "$seen_session" = 1 ]; then
        logger "spotshell: last SSH session closed, shutting down"
        shutdown -h now
        break
    elif [ $(( $(date +%s) - started )) -ge {grace_seconds} ]; then
        logger "spotshell: no SSH session within grace period, shutting down"
        shutdown -h now
        break
    fi
    sleep {check_interval}
done
MONITOR
chmod +x /usr/local/bin/spotshell-watch.sh

cat > /etc/systemd/system/spotshell-watch.service << 'SERVICE'
[Unit]
Description=spotshell SSH session watcher
After=network.target sshd.service

[Service]
ExecStart=/usr/local/bin/spotshell-watch.sh
Restart=on-failure
User=root

[Install]
WantedBy=multi-user.target
SERVICE

systemctl daemon-reload
systemctl enable --now spotshell-watch.service
logger "spotshell: session instance ready"
"""


def render_user_data(grace_seconds: int, check_interval: int = 30) -> str:
    """Render the boot script that powers the instance off once SSH goes idle.

    A one-time spot instance terminates when shut down from inside.

    Parameters
    ----------
    grace_seconds : int
        How long to wait for the first SSH session after boot
    check_interval : int
        Seconds between session checks

    Returns
    -------
    str
        Shell script suitable for instance user data
    """
    return USER_DATA_TEMPLATE.format(
        grace_seconds=int(grace_seconds), check_interval=int(check_interval)
    )
