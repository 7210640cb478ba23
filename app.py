from __future__ import annotations
import hashlib
import streamlit as st
import pandas as pd
from proxyscan.analysis import default_generator
from proxyscan.errors import IngestError, SessionStoreError
from proxyscan.export import export_session_to_excel_bytes
from proxyscan.ingest import load_table_from_upload
from proxyscan.log import setup_logging
from proxyscan.metadata import extract_metadata
from proxyscan.pipeline import run_analysis
from proxyscan.sessions import SessionStore
from proxyscan.utils import env_float

logger = setup_logging()

st.set_page_config(page_title="Проверка посещаемости", layout="wide")
st.title("Анализ посещаемости: поиск отметок за других (proxy)")

STATUS_MAP = {"clean": "Чисто", "suspicious": "Подозрительно", "flagged": "Отмечено"}
CLASS_OPTIONS = ["CSE", "ECE", "EEE", "MECH", "CIVIL", "IT"]
SECTION_OPTIONS = ["A", "B", "C", "D"]


@st.cache_resource
def _store() -> SessionStore:
    return SessionStore()


@st.cache_resource
def _generator():
    return default_generator()


def _upload_key(name: str, data: bytes) -> str:
    return hashlib.md5(name.encode("utf-8") + data).hexdigest()


def _pick_option(options: list[str], value: str | None) -> list[str]:
    # распознанное значение добавляем в список, если его там нет
    if value and value not in options:
        return [""] + options + [value]
    return [""] + options


def _render_result(result: dict) -> None:
    status = result.get("status", "clean")
    c1, c2, c3, c4 = st.columns(4)
    with c1:
        st.metric("Вероятность прокси", f"{result['proxyProbability'] * 100:.0f}%")
    with c2:
        st.metric("Статус", STATUS_MAP.get(status, status))
    with c3:
        st.metric("Присутствуют", f"{result['presentCount']} / {result['totalStudents']}")
    with c4:
        st.metric("Отмечено", result["flaggedCount"])

    st.subheader("Выводы")
    for ins in result.get("insights", []):
        st.write(f"- {ins}")

    if result.get("flaggedEntries"):
        st.subheader("Отмеченные студенты")
        fdf = pd.DataFrame(result["flaggedEntries"])
        st.dataframe(fdf, width="stretch")

    ip = result.get("ipAnalysis")
    seat = result.get("seatingAnalysis")
    if ip or seat:
        cc1, cc2 = st.columns(2)
        if ip:
            with cc1:
                st.markdown("**IP-адреса**")
                st.write(f"Уникальных: {ip['uniqueIPs']}, повторов: {ip['duplicateIPs']}")
                if ip.get("suspiciousIPs"):
                    st.caption(", ".join(ip["suspiciousIPs"]))
        if seat:
            with cc2:
                st.markdown("**Рассадка**")
                st.write(f"Кластеров: {seat['clusters']}, аномалий: {seat['anomalies']}")


def _download_button(session_id: str | None, key: str) -> None:
    if not session_id:
        return
    try:
        record = _store().find_by_id(session_id)
    except SessionStoreError as e:
        st.caption(f"Отчёт недоступен: {e}")
        return
    st.download_button(
        "Скачать Excel-отчёт",
        data=export_session_to_excel_bytes(record),
        file_name=f"attendance_{record.class_name}_{record.section}_{record.date:%Y%m%d}.xlsx",
        mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        key=key,
    )
# =========================

# Страница: анализ загрузки
# =========================
def page_analyze() -> None:
    upload = st.file_uploader("Загрузите таблицу посещаемости (CSV/XLSX)", type=["csv", "xlsx", "xls"])
    with st.expander("Ожидаемые колонки", expanded=False):
        st.write("Name, Roll Number, Bench ID, Present (Yes/No); опционально IP Address, Class, Section, Subject, Room")

    if not upload:
        st.info("Загрузите файл.")
        return

    data = upload.getvalue()
    ukey = _upload_key(upload.name, data)
    try:
        table = load_table_from_upload(upload.name, data)
    except IngestError as e:
        st.error(str(e))
        return

    meta = extract_metadata(table.headers, table.rows)
    detected = meta.detected_fields()
    if detected:
        st.success(f"Определено из таблицы: {', '.join(detected)} - проверьте и поправьте при необходимости")

    b1, b2, b3 = st.columns(3)
    with b1:
        st.caption(f"IP-колонка: {'есть' if meta.has_ip_column else 'нет'}")
    with b2:
        st.caption(f"ID парты: {'есть' if meta.has_bench_id_column else 'нет'}")
    with b3:
        if meta.present_count > 0:
            st.caption(f"Присутствуют: {meta.present_count}")

    # Данные сессии (распознанное - только подсказка)
    with st.form(f"meta_{ukey}"):
        m1, m2, m3, m4 = st.columns(4)
        with m1:
            opts = _pick_option(CLASS_OPTIONS, meta.class_name)
            class_name = st.selectbox("Класс", opts, index=opts.index(meta.class_name or ""))
        with m2:
            opts = _pick_option(SECTION_OPTIONS, meta.section)
            section = st.selectbox("Секция", opts, index=opts.index(meta.section or ""))
        with m3:
            subject = st.text_input("Предмет", value=meta.subject or "")
        with m4:
            room = st.text_input("Аудитория", value=meta.room or "")
        submitted = st.form_submit_button("Анализировать", type="primary")

    st.subheader("Предпросмотр")
    st.dataframe(pd.DataFrame(table.rows, columns=table.headers).head(20), width="stretch")

    if submitted:
        with st.spinner("Анализ посещаемости..."):
            result = run_analysis(
                table,
                class_name=class_name or None,
                section=section or None,
                subject=subject or None,
                room=room or None,
                generator=_generator(),
                timeout=env_float("PROXYSCAN_LLM_TIMEOUT", 20.0),
                store=_store(),
            )
        st.session_state["last_result"] = {"key": ukey, "result": result}

    last = st.session_state.get("last_result")
    if last and last["key"] == ukey:
        st.divider()
        _render_result(last["result"])
        _download_button(last["result"].get("sessionId"), key=f"dl_{ukey}")
# =========================

# Страница: история сессий
# =========================
def page_sessions() -> None:
    f1, f2, f3 = st.columns(3)
    with f1:
        status = st.selectbox("Статус", ["all", "clean", "suspicious", "flagged"],
                              format_func=lambda x: "(все)" if x == "all" else STATUS_MAP[x])
    with f2:
        class_name = st.text_input("Класс", value="")
    with f3:
        page = st.number_input("Страница", min_value=1, value=1)

    try:
        listing = _store().list_sessions(status=status, class_name=class_name.strip() or None, page=int(page))
    except SessionStoreError as e:
        st.error(f"Не удалось прочитать сессии: {e}")
        return

    sessions = listing["sessions"]
    pg = listing["pagination"]
    st.caption(f"Всего: {pg['total']}, страниц: {pg['pages']}")
    if not sessions:
        st.info("Сессий пока нет.")
        return

    st.dataframe(pd.DataFrame([{
        "Дата": s.date.strftime("%Y-%m-%d %H:%M"),
        "Класс": s.class_name,
        "Секция": s.section,
        "Предмет": s.subject or "",
        "Студентов": s.analysis.total_students,
        "Присутствуют": s.analysis.present_count,
        "Отмечено": s.analysis.flagged_count,
        "Вероятность": round(s.analysis.proxy_probability, 2),
        "Статус": STATUS_MAP.get(s.status.value, s.status.value),
    } for s in sessions]), width="stretch", hide_index=True)

    for s in sessions:
        with st.expander(f"{s.date:%Y-%m-%d %H:%M} - {s.class_name} {s.section} ({STATUS_MAP[s.status.value]})"):
            for ins in s.analysis.insights:
                st.write(f"- {ins}")
            _download_button(s.id, key=f"dl_{s.id}")
            if st.button("Удалить сессию", key=f"del_{s.id}"):
                try:
                    _store().delete(s.id)
                    st.success("Удалено.")
                    st.rerun()
                except SessionStoreError as e:
                    st.error(str(e))


page = st.sidebar.radio("Раздел", ["Анализ", "Сессии"])
if page == "Анализ":
    page_analyze()
else:
    page_sessions()
