"""duocall 명령줄 클라이언트.

시그널링 릴레이에 연결해 룸에 참가하고, aiortc로 원격 피어와 오디오
(선택적으로 화면 공유) 통화를 합니다.

Usage:
    duocall-client --room abc --name alice --audio-source default --audio-format pulse
    duocall-client --room abc --screen-source :0.0 --screen-format x11grab --share-screen
    duocall-client --room abc --record call.wav
    duocall-client                      # 새 룸 ID를 만들어 출력
"""

import argparse
import asyncio
import logging
import secrets
import string

from aiortc.contrib.media import MediaBlackhole, MediaRecorder

from .config import connection_config
from .modules.negotiation import (
    AiortcMediaEngine,
    LocalMedia,
    NegotiationOrchestrator,
    PlayerMediaProvider,
    WebSocketTransport,
    pump,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

ROOM_ID_ALPHABET = string.ascii_lowercase + string.digits
ROOM_ID_LENGTH = 8


def generate_room_id() -> str:
    """다른 사람에게 공유할 새 룸 ID를 만듭니다."""
    return "".join(secrets.choice(ROOM_ID_ALPHABET) for _ in range(ROOM_ID_LENGTH))


async def run_call(args: argparse.Namespace) -> None:
    """릴레이에 연결해 연결이 끊기거나 중단될 때까지 통화를 유지합니다."""
    provider = PlayerMediaProvider(
        audio_source=args.audio_source,
        audio_format=args.audio_format,
        screen_source=args.screen_source,
        screen_format=args.screen_format,
    )
    sink = MediaRecorder(args.record) if args.record else MediaBlackhole()

    async def on_remote_track(track):
        sink.addTrack(track)
        await sink.start()

    transport = WebSocketTransport(args.url)
    orchestrator = NegotiationOrchestrator(
        transport,
        AiortcMediaEngine,
        LocalMedia(provider),
        on_status=lambda text: print(f"[status] {text}"),
        on_remote_track=on_remote_track,
        negotiation_timeout=args.timeout,
    )

    await transport.connect()
    try:
        await orchestrator.start(args.room, name=args.name)
        if args.share_screen:
            await orchestrator.start_screen_share()
        await pump(transport, orchestrator)
    finally:
        await orchestrator.leave()
        await transport.close()
        await sink.stop()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="duocall signaling client")
    parser.add_argument("--url", default=connection_config.SIGNALING_URL, help="시그널링 서버 WebSocket 주소")
    parser.add_argument("--room", help="참가할 룸 ID (생략하면 새로 만듦)")
    parser.add_argument("--name", help="표시 이름")
    parser.add_argument("--audio-source", help="마이크 장치 또는 오디오 파일")
    parser.add_argument("--audio-format", help="마이크 입력 포맷 (pulse, alsa, avfoundation 등)")
    parser.add_argument("--screen-source", help="화면 캡처 장치 (예: :0.0)")
    parser.add_argument("--screen-format", help="화면 캡처 포맷 (예: x11grab)")
    parser.add_argument("--share-screen", action="store_true", help="참가 직후 화면 공유 시작")
    parser.add_argument("--record", help="수신 미디어를 저장할 파일 경로")
    parser.add_argument(
        "--timeout",
        type=float,
        default=connection_config.NEGOTIATION_TIMEOUT,
        help="answer 대기 시간 (초)",
    )
    return parser


def main():
    args = build_parser().parse_args()
    if not args.room:
        args.room = generate_room_id()
        print(f"created room: {args.room} (share this id with the other participant)")

    try:
        asyncio.run(run_call(args))
    except KeyboardInterrupt:
        logger.info("사용자 중단")


if __name__ == "__main__":
    main()
