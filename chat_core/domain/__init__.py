"""领域层模型与协议。

包含：
- models: 不可变的 Message 消息模型。
- conversation: 会话模型、会话摘要及 ConversationStore 抽象。
- exceptions: 业务异常类型定义。
"""
