"""终端版流式对话演示。

需要 Agent 服务监听在 ``AGENT_SERVER_URL``（默认 http://localhost:3001）。
回复输出过程中按 Ctrl+C 可中止当前回合。
"""

import threading

from jarvis_core.api.service import get_default_controller
from jarvis_core.streaming.reducer import TurnState


def _render(state: TurnState) -> None:
    if state.status:
        print(f"\r[{state.status}]", end="", flush=True)


if __name__ == "__main__":
    controller = get_default_controller()
    controller.subscribe(_render)
    thread = controller.ensure_active_thread()
    print("Thread:", thread.title)
    while True:
        try:
            text = input("\nYou: ")
        except EOFError:
            break
        outcome = {}
        worker = threading.Thread(target=lambda: outcome.update(result=controller.send(text)))
        worker.start()
        try:
            worker.join()
        except KeyboardInterrupt:
            controller.abort()
            worker.join()
        result = outcome.get("result")
        if result is None:
            continue
        if result.status == "aborted":
            print("\n(aborted)")
        else:
            print(f"\nAssistant: {result.content}")
