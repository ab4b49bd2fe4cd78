"""领域层模型与异常。

包含：
- models: Message / GenerationRequest / GenerationState / ServerMetrics 模型。
- conversation: 会话模型。
- exceptions: 业务异常类型定义。
"""
