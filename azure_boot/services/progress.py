from datetime import timedelta

from azure_boot.power_states import PowerState, friendly_name, transitional_for


# Decimal versions of #ffff75, #7cff75 and #ff6161.
COLOR_IN_PROGRESS = 16777077
COLOR_START = 8191861
COLOR_STOP = 16736609

_TARGET_TITLES = {
    PowerState.DEALLOCATED: (":stop_sign: Shutdown", COLOR_STOP),
    PowerState.RUNNING: (":rocket: Start", COLOR_START),
    PowerState.STOPPED: (":pause_button: Suspend", COLOR_STOP),
}


def format_duration(value: timedelta) -> str:
    total = max(int(value.total_seconds()), 0)
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes:02d}:{seconds:02d}"


def mean_duration(durations: list[timedelta]) -> timedelta | None:
    if not durations:
        return None
    return sum(durations, timedelta()) / len(durations)


def wait_icon(flip_flop: bool) -> str:
    return ":hourglass:" if flip_flop else ":hourglass_flowing_sand:"


class ProgressEmbed:
    """Builds the embed a power request shows on its control message."""

    def __init__(self, server_name: str, target: PowerState):
        title_word, color = _TARGET_TITLES[target]
        self.server_name = server_name
        self.target = target
        self.title = f"{title_word} {server_name} Server"
        self.color = color
        self.description: str | None = None
        self.fields: list[dict] = []

    def add_status(self, power: PowerState | None, flip_flop: bool) -> None:
        icon = ":sparkles:" if power == self.target else wait_icon(flip_flop)
        self.fields.append(
            {
                "name": "Server Status",
                "value": f"{icon} {friendly_name(power)}",
                "inline": True,
            }
        )

    def add_duration(self, elapsed: timedelta, estimate: timedelta | None) -> None:
        value = format_duration(elapsed)
        if estimate is not None:
            value += f" (est. {format_duration(estimate)})"
        self.fields.append({"name": "Duration", "value": value, "inline": True})

    def waiting_on(self, power: PowerState) -> None:
        self.color = COLOR_IN_PROGRESS
        self.description = (
            f"Please wait a moment, the {self.server_name} server is "
            f"{friendly_name(power).lower()} right now."
        )

    def acting(self) -> None:
        action_word = friendly_name(transitional_for(self.target)).lower()
        self.color = COLOR_IN_PROGRESS
        self.description = (
            f"Please wait a moment, the {self.server_name} server is just "
            f"{action_word} now."
        )

    def done(self) -> None:
        self.description = (
            f"All done! The {self.server_name} server is successfully "
            f"{friendly_name(self.target).lower()} now."
        )

    def to_dict(self) -> dict:
        embed: dict = {"title": self.title, "color": self.color, "fields": self.fields}
        if self.description:
            embed["description"] = self.description
        return embed
