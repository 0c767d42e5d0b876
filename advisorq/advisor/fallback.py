"""
Deterministic fallback advice.

Used whenever the provider is unavailable or returns an unusable shape, so
the advisor screen never shows an empty state.  Output depends only on the
snapshot and language: static per-language copy, with findings and warnings
selected by the snapshot flags.
"""

from __future__ import annotations

from dataclasses import dataclass

from advisorq.advisor.parsing import (
    AdviceDraft,
    CutCandidateDraft,
    ExpenseOptimizationDraft,
    InvestmentDraft,
    RiskProfileDraft,
    SavingsDraft,
)
from advisorq.advisor.types import FinancialSnapshot, Language, RiskLevel


@dataclass(frozen=True)
class FallbackCopy:
    summary: str
    savings_actions: tuple[str, ...]
    auto_transfer: str
    investment_guidance: tuple[str, ...]
    tips: tuple[str, ...]
    quick_wins: tuple[str, ...]
    profiles: dict[RiskLevel, tuple[str, str, tuple[str, ...]]]
    # Findings / warnings, formatted with snapshot values
    finding_negative_cashflow: str
    finding_low_savings: str
    finding_healthy_savings: str
    finding_over_budget: str
    finding_irregular_income: str
    finding_top_category: str
    warning_negative_cashflow: str
    warning_over_budget: str
    warning_no_emergency_fund: str


FALLBACK_COPY: dict[Language, FallbackCopy] = {
    Language.EN: FallbackCopy(
        summary=(
            "Your monthly view is ready. Keep your cashflow positive, protect an emergency "
            "buffer, and optimize recurring expenses first."
        ),
        savings_actions=(
            "Review discretionary expenses and set one weekly cap.",
            "Transfer savings right after income lands to avoid drift.",
            "Delay one non-essential purchase this week.",
        ),
        auto_transfer="Set an automatic transfer after each salary date toward your savings account.",
        investment_guidance=(
            "Build emergency reserves before taking higher volatility.",
            "Diversify and invest with fixed intervals instead of timing the market.",
            "Re-check your allocation once per month.",
        ),
        tips=(
            "Use weekly check-ins to catch overspending early.",
            "Prefer fixed bills negotiation before cutting essentials.",
            "Track one category deeply each month for better control.",
        ),
        quick_wins=(
            "Pause one subscription you did not use this month.",
            "Batch grocery shopping once per week.",
            "Set transport spending alerts.",
        ),
        profiles={
            RiskLevel.LOW: (
                "Low Risk Path",
                "Preserve capital with high liquidity and predictable returns.",
                ("Emergency fund account", "Short-term deposits", "Low-volatility funds"),
            ),
            RiskLevel.MEDIUM: (
                "Balanced Path",
                "Balance growth with volatility tolerance over a longer horizon.",
                ("Broad index funds", "Bond + equity mix", "Periodic rebalancing"),
            ),
            RiskLevel.HIGH: (
                "Growth Path",
                "Higher upside with larger drawdowns; suitable only with strong reserves.",
                ("Higher-equity allocation", "Sector concentration limits", "Strict risk limits"),
            ),
        },
        finding_negative_cashflow="Spending exceeded income this month by {amount}.",
        finding_low_savings="Your savings rate is {rate}%, below the 10% comfort level.",
        finding_healthy_savings="You kept {rate}% of this month's income.",
        finding_over_budget="Budgets over their limit: {names}.",
        finding_irregular_income="Your income varied noticeably over the last three months.",
        finding_top_category="{name} is your largest expense category at {share}% of spending.",
        warning_negative_cashflow="Negative cashflow: cover the gap before adding new commitments.",
        warning_over_budget="{count} budget(s) are over their limit.",
        warning_no_emergency_fund="You have no emergency buffer yet.",
    ),
    Language.TR: FallbackCopy(
        summary=(
            "Aylık görünüm hazır. Nakit akışını pozitif tutup önce acil durum yastığını "
            "güçlendir, sonra düzenli giderleri optimize et."
        ),
        savings_actions=(
            "Değişken harcamalara haftalık tavan koy.",
            "Gelir yattığında birikimi otomatik ayır.",
            "Bu hafta zorunlu olmayan bir harcamayı ertele.",
        ),
        auto_transfer="Maaş gününden hemen sonra birikim hesabına otomatik transfer tanımla.",
        investment_guidance=(
            "Yüksek oynaklığa geçmeden önce acil durum birikimini tamamla.",
            "Piyasayı zamanlamak yerine düzenli periyotlarla yatırım yap.",
            "Dağılımını ayda bir kez kontrol et.",
        ),
        tips=(
            "Aşırı harcamayı erken görmek için haftalık kontrol yap.",
            "Temel ihtiyaçları kısmadan önce sabit faturaları pazarlık et.",
            "Her ay bir kategoriyi derin takip et.",
        ),
        quick_wins=(
            "Bu ay kullanmadığın bir aboneliği duraklat.",
            "Market alışverişini haftada bir toplu yap.",
            "Ulaşım harcaması için uyarı limiti koy.",
        ),
        profiles={
            RiskLevel.LOW: (
                "Düşük Risk Planı",
                "Sermayeyi koruyup likiditeyi yüksek tutmayı hedefler.",
                ("Acil durum birikim hesabı", "Kısa vadeli mevduat", "Düşük oynaklık fonları"),
            ),
            RiskLevel.MEDIUM: (
                "Dengeli Plan",
                "Uzun vadede büyüme ve dalgalanma arasında denge kurar.",
                ("Geniş endeks fonları", "Tahvil + hisse dengesi", "Periyodik dengeleme"),
            ),
            RiskLevel.HIGH: (
                "Büyüme Planı",
                "Yüksek getiri potansiyeli karşılığında daha büyük dalgalanma içerir.",
                ("Daha yüksek hisse ağırlığı", "Sektör yoğunluğu sınırı", "Sıkı risk limitleri"),
            ),
        },
        finding_negative_cashflow="Bu ay giderler geliri {amount} aştı.",
        finding_low_savings="Birikim oranın %{rate}, önerilen %10 seviyesinin altında.",
        finding_healthy_savings="Bu ayki gelirinin %{rate} kadarını biriktirdin.",
        finding_over_budget="Limiti aşan bütçeler: {names}.",
        finding_irregular_income="Son üç ayda gelirin belirgin şekilde dalgalandı.",
        finding_top_category="En büyük gider kategorin {name}, harcamaların %{share} kadarı.",
        warning_negative_cashflow="Nakit akışı negatif: yeni taahhütlerden önce açığı kapat.",
        warning_over_budget="{count} bütçe limitini aştı.",
        warning_no_emergency_fund="Henüz acil durum birikimin yok.",
    ),
    Language.RU: FallbackCopy(
        summary=(
            "Месячный анализ готов. Сначала стабилизируйте денежный поток и резерв, затем "
            "оптимизируйте регулярные расходы."
        ),
        savings_actions=(
            "Установите недельный лимит на необязательные траты.",
            "Автоматически откладывайте деньги сразу после поступления дохода.",
            "Отложите одну необязательную покупку на эту неделю.",
        ),
        auto_transfer="Настройте автоперевод в сбережения сразу после дня поступления зарплаты.",
        investment_guidance=(
            "Сначала сформируйте резервный фонд перед ростом риска.",
            "Инвестируйте регулярно, а не пытайтесь угадывать рынок.",
            "Проверяйте распределение активов раз в месяц.",
        ),
        tips=(
            "Проводите еженедельный контроль расходов.",
            "Сначала оптимизируйте фиксированные платежи, затем переменные траты.",
            "Каждый месяц детально анализируйте одну категорию.",
        ),
        quick_wins=(
            "Отключите одну подписку, которой не пользовались в этом месяце.",
            "Покупайте продукты одним крупным походом в неделю.",
            "Поставьте лимиты-уведомления на транспорт.",
        ),
        profiles={
            RiskLevel.LOW: (
                "Консервативный профиль",
                "Сохранение капитала и высокая ликвидность.",
                ("Резервный счет", "Краткосрочные депозиты", "Фонды с низкой волатильностью"),
            ),
            RiskLevel.MEDIUM: (
                "Сбалансированный профиль",
                "Баланс между ростом и риском на длинном горизонте.",
                ("Широкие индексные фонды", "Смесь облигаций и акций", "Периодическая ребалансировка"),
            ),
            RiskLevel.HIGH: (
                "Агрессивный профиль",
                "Выше потенциал доходности, но выше просадки.",
                ("Более высокая доля акций", "Ограничение концентрации по секторам", "Жесткие риск-лимиты"),
            ),
        },
        finding_negative_cashflow="В этом месяце расходы превысили доходы на {amount}.",
        finding_low_savings="Норма сбережений {rate}%, ниже комфортных 10%.",
        finding_healthy_savings="Вы сохранили {rate}% дохода за месяц.",
        finding_over_budget="Бюджеты с превышением лимита: {names}.",
        finding_irregular_income="За последние три месяца доход заметно колебался.",
        finding_top_category="Крупнейшая категория расходов: {name}, {share}% трат.",
        warning_negative_cashflow="Отрицательный денежный поток: закройте разрыв до новых обязательств.",
        warning_over_budget="Превышен лимит в бюджетах: {count}.",
        warning_no_emergency_fund="Резервный фонд пока не сформирован.",
    ),
}


def _format_amount(value: float) -> str:
    return f"{value:,.2f}"


def _percent(value: float) -> str:
    return f"{round(value * 100, 1):g}"


def build_findings(snapshot: FinancialSnapshot, copy: FallbackCopy) -> list[str]:
    """Findings keyed by snapshot flags; always returns at least one entry."""
    flags = snapshot.flags
    spend = snapshot.spend
    findings: list[str] = []

    if flags.negative_cashflow:
        findings.append(
            copy.finding_negative_cashflow.format(amount=_format_amount(abs(spend.current_month_net)))
        )
    elif flags.low_savings_rate:
        findings.append(copy.finding_low_savings.format(rate=_percent(spend.savings_rate)))
    elif spend.current_month_income > 0:
        findings.append(copy.finding_healthy_savings.format(rate=_percent(spend.savings_rate)))

    if flags.overspending_category_names:
        findings.append(
            copy.finding_over_budget.format(names=", ".join(flags.overspending_category_names[:3]))
        )

    if flags.irregular_income:
        findings.append(copy.finding_irregular_income)

    if snapshot.category_breakdown:
        top = snapshot.category_breakdown[0]
        findings.append(
            copy.finding_top_category.format(name=top.name, share=f"{top.share_percent:g}")
        )

    return findings or [copy.summary]


def build_warnings(snapshot: FinancialSnapshot, copy: FallbackCopy) -> list[str]:
    warnings: list[str] = []
    if snapshot.flags.negative_cashflow:
        warnings.append(copy.warning_negative_cashflow)
    if snapshot.budget_adherence.over_limit_count > 0:
        warnings.append(copy.warning_over_budget.format(count=snapshot.budget_adherence.over_limit_count))
    if snapshot.total_balance <= 0:
        warnings.append(copy.warning_no_emergency_fund)
    return warnings


def ordered_profiles(copy: FallbackCopy, preferred: RiskLevel) -> list[RiskProfileDraft]:
    """Low, medium, high with the user's preferred profile moved to the front."""
    levels = [RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH]
    levels.sort(key=lambda level: 0 if level == preferred else 1)
    profiles = []
    for level in levels:
        title, rationale, options = copy.profiles[level]
        profiles.append(
            RiskProfileDraft(level=level, title=title, rationale=rationale, options=list(options))
        )
    return profiles


def build_fallback_advice(snapshot: FinancialSnapshot, language: Language) -> AdviceDraft:
    """Synthesize a complete advice draft from the snapshot alone."""
    copy = FALLBACK_COPY[language]
    preferences = snapshot.preferences
    target_rate = min(1.0, max(0.0, preferences.savings_target_rate / 100))
    monthly_target = round(max(0.0, snapshot.spend.current_month_income * target_rate), 2)

    top_categories = snapshot.category_breakdown[:3]
    if top_categories:
        cut_candidates = [
            CutCandidateDraft(
                label=item.name,
                suggested_reduction_percent=12 if item.total > 0 else 8,
                alternative_action=copy.quick_wins[0],
            )
            for item in top_categories
        ]
    else:
        cut_candidates = [
            CutCandidateDraft(
                label=copy.quick_wins[1],
                suggested_reduction_percent=10,
                alternative_action=copy.quick_wins[2],
            )
        ]

    guidance = list(copy.investment_guidance)
    guidance.append(copy.tips[0] if snapshot.total_balance > 0 else copy.tips[1])

    return AdviceDraft(
        summary=copy.summary,
        top_findings=build_findings(snapshot, copy),
        suggested_actions=list(copy.savings_actions),
        warnings=build_warnings(snapshot, copy),
        savings=SavingsDraft(
            target_rate=target_rate,
            monthly_target_amount=monthly_target,
            next7_days_actions=list(copy.savings_actions),
            auto_transfer_suggestion=copy.auto_transfer,
        ),
        investment=InvestmentDraft(
            profiles=ordered_profiles(copy, preferences.risk_profile),
            guidance=guidance,
        ),
        expense_optimization=ExpenseOptimizationDraft(
            cut_candidates=cut_candidates,
            quick_wins=list(copy.quick_wins),
        ),
        tips=list(copy.tips),
    )
