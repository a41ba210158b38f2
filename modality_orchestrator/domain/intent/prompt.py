"""意图识别提示模板：枚举意图集合与参数格式，要求模型返回 JSON 结构。"""

from __future__ import annotations

from modality_orchestrator.domain.enums import UserIntent

_INTENT_DESCRIPTIONS: dict[UserIntent, str] = {
    UserIntent.VIEW_AVAILABLE_ITEMS: "用户想要查看可借阅的书籍",
    UserIntent.SEARCH_ITEMS: "用户想要搜索特定的书籍",
    UserIntent.ACTION_LIST: "用户想先查看可借书列表再决定借哪本",
    UserIntent.ACTION_EXECUTE: "用户明确要借某本书，准备执行借书操作",
    UserIntent.RETURN_ACTION: "用户想要归还书籍",
    UserIntent.GENERAL_PROCESSING: "其他一般性处理请求",
}

_TEMPLATE = """你是一个智能意图识别系统。请分析用户输入的内容，识别用户的意图和相关参数。

可能的意图包括：
{intent_lines}

注意区分 ACTION_LIST 和 ACTION_EXECUTE：
- ACTION_LIST：用户只是想看看有哪些书可以借，例如"我想看看有哪些书可以借"
- ACTION_EXECUTE：用户明确表示要借书，例如"我想借《Java编程思想》"

需要提取的参数包括：
1. bookId（图书ID）：数字字符串，例如"图书ID为12345"
2. bookTitle（图书标题）：书名号《》或引号中的内容
3. studentId（学号）：数字字符串，例如"学号为2021001"
4. studentName（学生姓名）：例如"姓名为张三"
5. category（图书类别）：例如"编程"、"数学"、"文学"

请只返回如下 JSON，不要添加未在用户输入中明确提及的参数，没有参数时 parameters 为空对象 {{}}：
{{
  "intent": "意图名称",
  "parameters": {{
    "参数名": "参数值"
  }}
}}

用户输入：{user_input}
"""


class IntentPromptTemplate:
    """意图识别提示模板。"""
    def __init__(self, template: str = _TEMPLATE) -> None:
        self._template = template

    def render(self, user_input: str) -> str:
        intent_lines = "\n".join(
            f"{index}. {intent.value}: {self.describe(intent)}" for index, intent in enumerate(UserIntent, start=1)
        )
        return self._template.format(intent_lines=intent_lines, user_input=user_input)

    @staticmethod
    def intents() -> list[str]:
        return [intent.value for intent in UserIntent]

    @staticmethod
    def describe(intent: UserIntent) -> str:
        return _INTENT_DESCRIPTIONS.get(intent, "未知意图")
