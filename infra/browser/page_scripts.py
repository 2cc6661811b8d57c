"""In-page scripts evaluated by ``PlaywrightBrowserDriver``.

Each script is a single arrow function taking one options object, so it can
be passed straight to ``page.evaluate(script, options)``.
"""

from __future__ import annotations


_HELPERS = r"""
  const clean = (s) => String(s || '').replace(/\s+/g, ' ').trim();
  const trunc = (s, max) => {
    const t = clean(s);
    if (!max || max <= 0 || t.length <= max) return t;
    if (max <= 3) return t.slice(0, max);
    return t.slice(0, max - 3) + '...';
  };
  const escapeCss = (value) => {
    if (window.CSS && CSS.escape) return CSS.escape(value);
    return String(value || '').replace(/([ #;?%&,.+*~':"!^$\\[\]()=>|\/@])/g, '\\$1');
  };
  const cssPath = (el) => {
    if (el.id && document.querySelectorAll('#' + escapeCss(el.id)).length === 1) {
      return '#' + escapeCss(el.id);
    }
    const parts = [];
    let node = el;
    while (node && node.nodeType === 1 && node !== document.documentElement) {
      const tag = node.tagName.toLowerCase();
      const parent = node.parentElement;
      if (!parent) {
        parts.unshift(tag);
        break;
      }
      const same = Array.from(parent.children).filter((c) => c.tagName === node.tagName);
      parts.unshift(same.length > 1 ? `${tag}:nth-of-type(${same.indexOf(node) + 1})` : tag);
      node = parent;
    }
    return 'html > ' + parts.join(' > ');
  };
  const selectorHint = (el) => {
    if (!el || el.nodeType !== 1) return null;
    if (el.id) return `#${escapeCss(el.id)}`;
    const tag = el.tagName.toLowerCase();
    const name = el.getAttribute('name');
    if (name && name.length <= 120) return `${tag}[name="${escapeCss(name)}"]`;
    const aria = el.getAttribute('aria-label');
    if (aria && aria.length <= 120) return `${tag}[aria-label="${escapeCss(aria)}"]`;
    const testId = el.getAttribute('data-testid');
    if (testId && testId.length <= 120) return `[data-testid="${escapeCss(testId)}"]`;
    return cssPath(el);
  };
"""


ELEMENTS_JS = (
    "({ maxItems, maxTextChars, viewportOnly, visual, fullPage }) => {"
    + _HELPERS
    + r"""
  const roleOf = (el) => {
    const explicit = clean(el.getAttribute('role'));
    if (explicit) return explicit.toLowerCase();
    const tag = el.tagName.toLowerCase();
    if (tag === 'a') return 'link';
    if (tag === 'button') return 'button';
    if (tag === 'select') return 'combobox';
    if (tag === 'textarea') return 'textbox';
    if (tag === 'input') {
      const type = (el.getAttribute('type') || 'text').toLowerCase();
      if (type === 'checkbox' || type === 'radio') return type;
      if (type === 'submit' || type === 'button' || type === 'reset') return 'button';
      return 'textbox';
    }
    if (el.getAttribute('contenteditable') === 'true') return 'textbox';
    return tag;
  };
  const textOf = (el) => clean(
    el.getAttribute('aria-label') ||
      el.innerText ||
      (el.tagName === 'INPUT' && ['submit', 'button'].includes(el.type) ? el.value : '') ||
      el.getAttribute('placeholder') ||
      el.getAttribute('title') ||
      (el.labels && el.labels.length ? el.labels[0].textContent : '') ||
      el.getAttribute('name') ||
      ''
  );

  const query = [
    'a[href]', 'button', 'input:not([type=hidden])', 'select', 'textarea',
    '[role=button]', '[role=link]', '[role=checkbox]', '[role=radio]',
    '[role=option]', '[role=tab]', '[role=menuitem]', '[contenteditable="true"]'
  ].join(', ');

  const out = [];
  for (const el of document.querySelectorAll(query)) {
    if (out.length >= maxItems) break;
    const rect = el.getBoundingClientRect();
    if (rect.width === 0 && rect.height === 0) continue;
    const inViewport = rect.bottom > 0 && rect.right > 0 &&
      rect.top < window.innerHeight && rect.left < window.innerWidth;
    if (viewportOnly && !inViewport) continue;
    if (visual && !fullPage && !inViewport) continue;

    const dx = visual && fullPage ? window.scrollX : 0;
    const dy = visual && fullPage ? window.scrollY : 0;
    out.push({
      locator: selectorHint(el),
      role: roleOf(el),
      text: trunc(textOf(el), maxTextChars),
      x: rect.left + dx,
      y: rect.top + dy,
      width: rect.width,
      height: rect.height
    });
  }
  return out;
}"""
)


SCROLL_STATE_JS = """() => ({
  scrollX: window.scrollX,
  scrollY: window.scrollY,
  innerWidth: window.innerWidth,
  innerHeight: window.innerHeight,
  scrollWidth: document.documentElement.scrollWidth,
  scrollHeight: document.documentElement.scrollHeight
})"""


CENTER_ON_POINT_JS = """([x, y]) => {
  window.scrollTo(Math.max(0, x - window.innerWidth / 2), Math.max(0, y - window.innerHeight / 2));
  return { scrollX: window.scrollX, scrollY: window.scrollY };
}"""


AUDIT_FORM_JS = (
    "({ maxItems, maxLabelChars }) => {"
    + _HELPERS
    + r"""
  const labelFromAriaLabelledBy = (el) => {
    const ids = clean(el.getAttribute('aria-labelledby') || '');
    if (!ids) return '';
    return ids
      .split(/\s+/)
      .map((id) => document.getElementById(id))
      .filter(Boolean)
      .map((n) => clean(n.textContent))
      .filter(Boolean)
      .join(' ');
  };
  const labelFromNativeLabel = (el) => {
    const labels = el.labels ? Array.from(el.labels) : [];
    const direct = labels.map((l) => clean(l.textContent)).filter(Boolean).join(' ');
    if (direct) return direct;
    const wrap = el.closest ? el.closest('label') : null;
    return wrap ? clean(wrap.textContent) : '';
  };
  const getLabel = (el) => trunc(
    labelFromNativeLabel(el) ||
      clean(el.getAttribute('aria-label') || '') ||
      labelFromAriaLabelledBy(el) ||
      clean(el.getAttribute('placeholder') || '') ||
      clean(el.getAttribute('name') || '') ||
      clean(el.id || ''),
    maxLabelChars
  );
  const isRequired = (el) => {
    if (el.required) return true;
    if (clean(el.getAttribute('aria-required')).toLowerCase() === 'true') return true;
    return el.hasAttribute('required');
  };

  const controls = Array.from(
    document.querySelectorAll('input, textarea, select, [contenteditable="true"]')
  );
  const radioByName = new Map();
  for (const el of controls) {
    if (!(el instanceof HTMLInputElement) || (el.type || '').toLowerCase() !== 'radio') continue;
    const name = clean(el.getAttribute('name'));
    if (!name) continue;
    if (!radioByName.has(name)) radioByName.set(name, []);
    radioByName.get(name).push(el);
  }

  const seen = new Set();
  const missing = [];
  let total = 0;
  const report = (entry) => {
    if (missing.length < maxItems) missing.push(entry);
  };

  for (const el of controls) {
    if (el instanceof HTMLInputElement) {
      const type = (el.getAttribute('type') || '').toLowerCase();
      if (type === 'hidden' || type === 'submit' || type === 'button') continue;
      if (type === 'radio') {
        const name = clean(el.getAttribute('name'));
        if (!name || seen.has(name)) continue;
        seen.add(name);
        const group = radioByName.get(name) || [];
        if (!group.some(isRequired)) continue;
        total += 1;
        if (group.some((r) => r.checked)) continue;
        const fieldset = el.closest ? el.closest('fieldset') : null;
        const legend = fieldset ? clean(fieldset.querySelector('legend')?.textContent) : '';
        report({ kind: 'radio', label: trunc(legend || getLabel(el) || name, maxLabelChars),
                 selector: selectorHint(el), groupName: name });
        continue;
      }
      if (!isRequired(el)) continue;
      total += 1;
      if (type === 'checkbox') {
        if (!el.checked) report({ kind: 'checkbox', label: getLabel(el), selector: selectorHint(el) });
        continue;
      }
      if (!clean(el.value)) report({ kind: 'text', label: getLabel(el), selector: selectorHint(el) });
      continue;
    }
    if (!isRequired(el)) continue;
    total += 1;
    if (el instanceof HTMLTextAreaElement) {
      if (!clean(el.value)) report({ kind: 'textarea', label: getLabel(el), selector: selectorHint(el) });
    } else if (el instanceof HTMLSelectElement) {
      if (!clean(el.value)) report({ kind: 'select', label: getLabel(el), selector: selectorHint(el) });
    } else if (!clean(el.textContent)) {
      report({ kind: 'contenteditable', label: getLabel(el), selector: selectorHint(el) });
    }
  }
  return { total, missing };
}"""
)


GOOGLE_AUDIT_JS = r"""({ maxItems, maxLabelChars }) => {
  const clean = (s) => String(s || '').replace(/\s+/g, ' ').trim();
  const placeholders = new Set(['choose', 'select', 'choose an option', 'select an option']);
  const blocks = Array.from(document.querySelectorAll('div.Qr7Oae'));
  const missing = [];
  let total = 0;

  for (const block of blocks) {
    const title = clean(block.querySelector('[role=heading]')?.textContent).replace(/\s*\*$/, '');
    if (!title) continue;
    const required = Boolean(
      block.querySelector('[aria-required=true], [aria-label="Required question"]')
    );
    if (!required) continue;
    total += 1;

    const listbox = block.querySelector('[role=listbox], [role=combobox]');
    const textarea = block.querySelector('textarea');
    const textInput = block.querySelector(
      'input[type=text], input[type=email], input[type=url], input[type=date], input:not([type])'
    );
    const checkboxes = Array.from(block.querySelectorAll('div[role=checkbox]'));
    const radios = Array.from(block.querySelectorAll('div[role=radio]'));

    let kind = 'text';
    let answered = false;
    if (textarea) {
      kind = 'textarea';
      answered = clean(textarea.value).length > 0;
    } else if (listbox) {
      kind = 'select';
      const chosen = Array.from(block.querySelectorAll('[role=option][aria-selected=true]'))
        .map((el) => clean(el.getAttribute('data-value') || el.textContent))
        .find((v) => v && !placeholders.has(v.toLowerCase()));
      answered = Boolean(chosen);
    } else if (checkboxes.length > 0) {
      kind = 'checkbox';
      answered = checkboxes.some((el) => el.getAttribute('aria-checked') === 'true');
    } else if (radios.length > 0) {
      kind = radios.some((el) => clean(el.getAttribute('aria-label')).includes(', response for '))
        ? 'grid' : 'radio';
      answered = radios.some((el) => el.getAttribute('aria-checked') === 'true');
    } else if (textInput) {
      answered = clean(textInput.value).length > 0;
    }

    if (!answered && missing.length < maxItems) {
      missing.push({ kind, label: title.slice(0, maxLabelChars), selector: null, groupName: null });
    }
  }
  return { total, missing };
}"""
