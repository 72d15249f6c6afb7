"""领域层模型与协议。

包含：
- thread: 会话与消息的存储模型及 ThreadStore 抽象。
- events: Agent 服务流式事件的强类型表示。
- exceptions: 业务异常类型定义。
"""
