from dataclasses import dataclass

from models import TransactionType


@dataclass(frozen=True)
class DefaultCategory:
    name: str
    type: TransactionType


@dataclass(frozen=True)
class DefaultSubcategory:
    category_name: str
    name: str
    type: TransactionType


_EXPENSE = TransactionType.expense
_INCOME = TransactionType.income


DEFAULT_CATEGORIES: tuple[DefaultCategory, ...] = (
    DefaultCategory("食費", _EXPENSE),
    DefaultCategory("日用品", _EXPENSE),
    DefaultCategory("交通費", _EXPENSE),
    DefaultCategory("光熱費", _EXPENSE),
    DefaultCategory("住居費", _EXPENSE),
    DefaultCategory("医療費", _EXPENSE),
    DefaultCategory("教育費", _EXPENSE),
    DefaultCategory("娯楽費", _EXPENSE),
    DefaultCategory("その他", _EXPENSE),
    DefaultCategory("給与", _INCOME),
    DefaultCategory("賞与", _INCOME),
    DefaultCategory("その他収入", _INCOME),
)


def _subs(
    category_name: str, type_: TransactionType, *names: str
) -> list[DefaultSubcategory]:
    return [DefaultSubcategory(category_name, name, type_) for name in names]


# Some parents (通信費, 衣類, その他支出, 副収入) are not default categories; their
# entries only apply when the user has created a matching category.
DEFAULT_SUBCATEGORIES: tuple[DefaultSubcategory, ...] = tuple(
    _subs("食費", _EXPENSE, "外食", "食材", "お弁当", "お菓子・飲み物")
    + _subs("交通費", _EXPENSE, "電車", "バス", "タクシー", "ガソリン")
    + _subs("娯楽費", _EXPENSE, "映画・動画", "ゲーム", "スポーツ", "読書")
    + _subs(
        "日用品",
        _EXPENSE,
        "洗剤・掃除用品",
        "ティッシュ・トイレットペーパー",
        "バス・シャンプー",
    )
    + _subs("光熱費", _EXPENSE, "電気代", "ガス代", "水道代")
    + _subs("通信費", _EXPENSE, "携帯電話", "インターネット", "サブスクリプション")
    + _subs("医療費", _EXPENSE, "病院", "薬局", "健康診断")
    + _subs("教育費", _EXPENSE, "書籍", "オンライン学習", "セミナー・講座")
    + _subs("衣類", _EXPENSE, "洋服", "靴", "アクセサリー")
    + _subs("その他支出", _EXPENSE, "プレゼント", "寄付")
    + _subs("給与", _INCOME, "基本給", "残業代", "ボーナス", "交通費支給")
    + _subs("副収入", _INCOME, "フリーランス", "アルバイト", "投資収益")
    + _subs(
        "その他収入", _INCOME, "お祝い金", "還付金", "ポイント・キャッシュバック"
    )
)
