"""
Field discovery for live application pages.

The DOM heuristics (visibility, label resolution, prompt scoring, constraint
parsing, locator hints) run inside each frame through EXTRACTOR_SCRIPT. The
Python side fans the script out over every frame concurrently, isolates frame
failures and validates what comes back into FieldDescriptor objects.
"""

import asyncio
import logging

from playwright.async_api import Frame, Page

from autofill.env import MAX_PAGE_FIELDS
from autofill.logging import get_logger
from autofill.models import FieldDescriptor

get_logger()
logger = logging.getLogger(__name__)

EXTRACTOR_VERSION = 3

# Controls inspected per frame before the global MAX_PAGE_FIELDS cap applies
FRAME_CONTROL_LIMIT = 80

EXTRACTOR_SCRIPT = """
(frameInfo) => {
  const norm = (s) => (s || "").replace(/\\s+/g, " ").trim();
  const textOf = (el) => norm((el && (el.textContent || el.innerText)) || "");
  const isVisible = (el) => {
    const cs = window.getComputedStyle(el);
    if (!cs || cs.display === "none" || cs.visibility === "hidden") return false;
    const r = el.getBoundingClientRect();
    return r.width > 0 && r.height > 0;
  };
  const esc = (v) =>
    window.CSS && CSS.escape ? CSS.escape(v) : v.replace(/[^a-zA-Z0-9_-]/g, "\\\\$&");
  const escAttr = (v) => v.replace(/["\\\\]/g, "\\\\$&");

  const getLabelText = (el) => {
    try {
      const labels = el.labels;
      if (labels && labels.length) {
        const t = Array.from(labels).map((n) => textOf(n)).filter(Boolean);
        if (t.length) return t.join(" ");
      }
    } catch (e) {}
    const id = el.getAttribute("id");
    if (id) {
      const t = textOf(document.querySelector(`label[for="${escAttr(id)}"]`));
      if (t) return t;
    }
    return textOf(el.closest("label"));
  };

  const textOfIds = (ids) =>
    norm(
      ids
        .split(/\\s+/)
        .map((id) => textOf(document.getElementById(id)))
        .filter(Boolean)
        .join(" ")
    );

  const getAriaName = (el) => {
    const direct = norm(el.getAttribute("aria-label"));
    if (direct) return direct;
    const labelledBy = norm(el.getAttribute("aria-labelledby"));
    return labelledBy ? textOfIds(labelledBy) : "";
  };

  const getDescribedBy = (el) => {
    const ids = norm(el.getAttribute("aria-describedby"));
    return ids ? textOfIds(ids) : "";
  };

  const findFieldContainer = (el) =>
    el.closest(
      "fieldset, [role='group'], .form-group, .field, .input-group, .question, .formField, section, article, li, div"
    ) || el.parentElement;

  const collectNearbyPrompts = (el) => {
    const container = findFieldContainer(el);
    if (!container) return [];
    const prompts = [];

    const fieldset = el.closest("fieldset");
    if (fieldset) {
      const t = textOf(fieldset.querySelector("legend"));
      if (t) prompts.push({ source: "legend", text: t });
    }

    container
      .querySelectorAll("h1,h2,h3,h4,h5,h6,p,.help,.hint,.description,[data-help],[data-testid*='help']")
      .forEach((n) => {
        const t = textOf(n);
        if (t && t.length <= 350) prompts.push({ source: "container_text", text: t });
      });

    const siblingTags = ["div", "p", "span", "h1", "h2", "h3", "h4", "h5", "h6", "label"];
    let sib = el.previousElementSibling;
    let steps = 0;
    while (sib && steps < 4) {
      if (siblingTags.includes(sib.tagName.toLowerCase())) {
        const t = textOf(sib);
        if (t && t.length <= 350) prompts.push({ source: "prev_sibling", text: t });
      }
      sib = sib.previousElementSibling;
      steps += 1;
    }
    return prompts;
  };

  const looksBoilerplate = (t) => {
    const s = t.toLowerCase();
    return ["privacy", "terms", "cookies", "equal opportunity", "eeo", "gdpr"].some((w) => s.includes(w));
  };

  const scorePrompt = (text, source) => {
    const s = text.toLowerCase();
    let score = 0;
    if (text.includes("?")) score += 6;
    if (/^(why|how|what|describe|explain|tell us|please describe|please explain)\\b/i.test(text)) score += 4;
    if (/(position|role|motivation|interested|interest|experience|background|cover letter)/i.test(text)) score += 2;
    if (text.length >= 20 && text.length <= 220) score += 3;
    if (source === "label" || source === "aria") score += 5;
    else if (source === "describedby") score += 3;
    if (text.length > 350) score -= 4;
    if (looksBoilerplate(text)) score -= 6;
    if (s === "optional" || s === "required") score -= 5;
    return score;
  };

  const parseTextConstraints = (text) => {
    const t = text.toLowerCase();
    const out = {};
    const put = (key, m) => {
      const n = m ? parseInt(m[1], 10) : NaN;
      if (Number.isFinite(n)) out[key] = n;
    };
    put("max_words", t.match(/max(?:imum)?\\s*(?:of\\s*)?(\\d+)\\s*words?/));
    put("min_words", t.match(/min(?:imum)?\\s*(?:of\\s*)?(\\d+)\\s*words?/));
    put("max_chars", t.match(/max(?:imum)?\\s*(?:of\\s*)?(\\d+)\\s*(?:characters|chars)/));
    put("min_chars", t.match(/min(?:imum)?\\s*(?:of\\s*)?(\\d+)\\s*(?:characters|chars)/));
    return out;
  };

  const recommendedLocators = (el, bestLabel) => {
    const tag = el.tagName.toLowerCase();
    const id = el.getAttribute("id");
    const name = el.getAttribute("name");
    const placeholder = el.getAttribute("placeholder");
    let css = tag;
    if (id) css = `#${esc(id)}`;
    else if (name) css = `${tag}[name="${escAttr(name)}"]`;
    let hint = `locator(${JSON.stringify(css)})`;
    if (bestLabel) hint = `getByLabel(${JSON.stringify(bestLabel)})`;
    else if (placeholder) hint = `getByPlaceholder(${JSON.stringify(placeholder)})`;
    return { css, playwright: hint };
  };

  const slug = (v) => norm(v).toLowerCase().replace(/[^a-z0-9]+/g, "_").replace(/^_+|_+$/g, "");
  const intAttr = (el, name) => {
    const n = parseInt(el.getAttribute(name) || "", 10);
    return Number.isFinite(n) && n >= 0 ? n : undefined;
  };

  const controls = Array.from(
    document.querySelectorAll('input, textarea, select, [contenteditable="true"], [role="textbox"]')
  ).slice(0, frameInfo.limit);

  const fields = [];
  controls.forEach((el, idx) => {
    const tag = el.tagName.toLowerCase();
    const inputType = tag === "input" ? norm(el.type || el.getAttribute("type") || "text").toLowerCase() : "";
    if (["hidden", "submit", "button", "image", "reset"].includes(inputType)) return;
    if (!isVisible(el)) return;

    const label = norm(getLabelText(el));
    const ariaName = norm(getAriaName(el));
    const describedBy = norm(getDescribedBy(el));
    const placeholder = norm(el.getAttribute("placeholder"));
    const autocomplete = norm(el.getAttribute("autocomplete"));
    const name = norm(el.getAttribute("name"));
    const id = norm(el.getAttribute("id"));

    const type =
      tag === "input" ? inputType || "text"
      : tag === "textarea" ? "textarea"
      : tag === "select" ? "select"
      : el.getAttribute("role") === "textbox" || el.getAttribute("contenteditable") === "true" ? "richtext"
      : tag;

    const candidates = [];
    if (label) candidates.push({ source: "label", text: label, score: scorePrompt(label, "label") });
    if (ariaName) candidates.push({ source: "aria", text: ariaName, score: scorePrompt(ariaName, "aria") });
    if (placeholder) candidates.push({ source: "placeholder", text: placeholder, score: scorePrompt(placeholder, "placeholder") });
    if (describedBy) candidates.push({ source: "describedby", text: describedBy, score: scorePrompt(describedBy, "describedby") });
    const nearbyPrompts = collectNearbyPrompts(el).map((p) => ({ ...p, score: scorePrompt(p.text, p.source) }));
    nearbyPrompts.forEach((p) => candidates.push(p));

    // label-sourced prompts outrank everything else, then score
    candidates.sort((a, b) => (b.source === "label") - (a.source === "label") || b.score - a.score);
    const questionText = candidates.length ? candidates[0].text : "";
    const locators = recommendedLocators(el, label || ariaName || questionText || placeholder);

    const constraints = {};
    const maxlen = intAttr(el, "maxlength");
    const minlen = intAttr(el, "minlength");
    if (maxlen !== undefined) constraints.maxlength = maxlen;
    if (minlen !== undefined) constraints.minlength = minlen;
    Object.assign(constraints, parseTextConstraints(`${questionText} ${describedBy}`));

    const essayText = `${questionText} ${label} ${describedBy}`.toLowerCase();
    const likelyEssay =
      type === "textarea" ||
      type === "richtext" ||
      Boolean(constraints.max_words) ||
      Boolean(constraints.max_chars && constraints.max_chars > 180) ||
      (/why|tell us|describe|explain|motivation|interest|cover letter|statement/.test(essayText) &&
        (questionText.length > 0 || label.length > 0));

    const options =
      tag === "select"
        ? Array.from(el.options || []).map((o) => norm(o.textContent)).filter(Boolean).slice(0, 50)
        : [];

    fields.push({
      index: fields.length,
      field_id: id || name || slug(label || ariaName || questionText || placeholder || "") || `field_${idx}`,
      tag,
      type,
      id: id || null,
      name: name || null,
      label: label || null,
      ariaName: ariaName || null,
      placeholder: placeholder || null,
      describedBy: describedBy || null,
      autocomplete: autocomplete || null,
      required: Boolean(el.required || el.getAttribute("aria-required") === "true"),
      questionText: questionText || null,
      questionCandidates: candidates.slice(0, 5),
      containerPrompts: nearbyPrompts,
      constraints,
      locators,
      selector: locators.css,
      options,
      likelyEssay,
      frameUrl: frameInfo.frameUrl,
      frameName: frameInfo.frameName,
    });
  });
  return fields;
}
"""


async def collect_page_fields_from_frame(
    frame: Frame, frame_url: str, frame_name: str
) -> list[FieldDescriptor]:
    raw_fields = await frame.evaluate(
        EXTRACTOR_SCRIPT,
        {"frameUrl": frame_url, "frameName": frame_name, "limit": FRAME_CONTROL_LIMIT},
    )
    fields = []
    for raw in raw_fields or []:
        field = FieldDescriptor.from_raw(raw)
        if field is None:
            logger.debug(f"Dropping malformed descriptor from frame {frame_name}: {raw}")
            continue
        fields.append(field)
    return fields


async def collect_page_fields(
    page: Page, max_fields: int = MAX_PAGE_FIELDS
) -> list[FieldDescriptor]:
    """
    Scan every frame of the page in parallel.

    A frame that throws contributes no fields. When the merged result is empty
    the main frame is scanned once more on its own.
    """

    async def scan(idx: int, frame: Frame) -> list[FieldDescriptor]:
        frame_name = frame.name or f"frame-{idx}"
        try:
            return await collect_page_fields_from_frame(frame, frame.url, frame_name)
        except Exception as e:
            logger.warning(f"Field scan failed for frame {frame_name}: {e}")
            return []

    results = await asyncio.gather(
        *(scan(idx, frame) for idx, frame in enumerate(page.frames))
    )
    merged = [field for frame_fields in results for field in frame_fields]

    if not merged:
        main_frame = page.main_frame
        try:
            merged = await collect_page_fields_from_frame(
                main_frame, main_frame.url, main_frame.name or "main"
            )
        except Exception as e:
            logger.warning(f"Main frame fallback scan failed: {e}")
            return []

    fields = [
        field.model_copy(update={"index": idx})
        for idx, field in enumerate(merged[:max_fields])
    ]
    logger.info(f"Discovered {len(fields)} fields across {len(page.frames)} frames")
    return fields
