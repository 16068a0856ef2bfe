from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Serial receiver (empty port = serial disabled, UDP only)
    serial_port: str = ""
    baud_rate: int = 9600
    reconnect_delay: float = 5.0

    # UDP test/bridge listener
    udp_enabled: bool = True
    udp_host: str = "0.0.0.0"
    udp_port: int = 50547

    # Output and framing
    refresh_interval: float = 60.0
    max_buffer_bytes: int = 4096
    probe_window: float = 2.0
    log_level: str = "INFO"

    model_config = {"env_prefix": "SERIAL_GPS_"}

    @property
    def serial_enabled(self) -> bool:
        return bool(self.serial_port)
