"""
JavaScript injected into pages.

The page side only observes and describes: it turns elements into JSON
descriptors (see ``DomNode.from_descriptor``) and forwards raw events through
a Playwright binding. Selector derivation, deduplication and enrichment all
happen in Python.
"""

READY_STATE_JS = "() => document.readyState"

PAGE_TEXT_JS = "() => document.body ? document.body.innerText : ''"

SCROLL_TO_BOTTOM_JS = "() => window.scrollTo(0, document.body.scrollHeight)"

SCROLL_TO_JS = "([x, y]) => window.scrollTo(x, y)"

DOM_CLICK_JS = "(el) => el.click()"

IS_FILE_INPUT_JS = "(el) => el.tagName.toLowerCase() === 'input' && el.type === 'file'"

TAG_NAME_JS = "(el) => el.tagName.toLowerCase()"

# Images, media and frames report whether their content has arrived; other
# elements count as loaded once attached.
ELEMENT_LOADED_JS = r"""
(el) => {
  const tag = el.tagName.toLowerCase();
  if (tag === 'img') return el.complete;
  if (tag === 'video' || tag === 'audio') return el.readyState >= 2;
  if (tag === 'iframe') {
    try {
      return el.contentDocument ? el.contentDocument.readyState === 'complete' : true;
    } catch (e) {
      return true;
    }
  }
  return true;
}
"""

# Defines window.__replayDescribe(el) -> descriptor.
DESCRIBE_ELEMENT_JS = r"""
(() => {
  if (window.__replayDescribe) return;

  const normalize = (text) =>
    (text || '').replace(/[\u200B-\u200D\uFEFF]/g, '').replace(/\s+/g, ' ').trim();

  const attributesOf = (el) => {
    const attrs = {};
    for (const attr of Array.from(el.attributes || [])) attrs[attr.name] = attr.value;
    return attrs;
  };

  const position = (el) => {
    const parent = el.parentElement;
    if (!parent) return [1, 1];
    const same = Array.from(parent.children).filter((c) => c.tagName === el.tagName);
    return [same.indexOf(el) + 1, same.length];
  };

  const isVisible = (el) => {
    const rect = el.getBoundingClientRect();
    if (rect.width === 0 && rect.height === 0) return false;
    const style = window.getComputedStyle(el);
    return style.display !== 'none' && style.visibility !== 'hidden' && style.opacity !== '0';
  };

  const nearbyText = (el, maxDistance) => {
    const rect = el.getBoundingClientRect();
    const cx = rect.left + rect.width / 2;
    const cy = rect.top + rect.height / 2;
    const texts = [];
    if (!document.body) return texts;
    const walker = document.createTreeWalker(document.body, NodeFilter.SHOW_TEXT, {
      acceptNode: (node) => {
        const parent = node.parentElement;
        if (!parent) return NodeFilter.FILTER_REJECT;
        const tag = parent.tagName.toLowerCase();
        if (tag === 'script' || tag === 'style' || tag === 'noscript') return NodeFilter.FILTER_REJECT;
        if (!node.textContent.trim()) return NodeFilter.FILTER_REJECT;
        const style = window.getComputedStyle(parent);
        if (style.display === 'none' || style.visibility === 'hidden' || style.opacity === '0') {
          return NodeFilter.FILTER_REJECT;
        }
        return NodeFilter.FILTER_ACCEPT;
      },
    });
    let node;
    while ((node = walker.nextNode())) {
      if (el.contains(node.parentElement)) continue;
      const range = document.createRange();
      range.selectNodeContents(node);
      const r = range.getBoundingClientRect();
      const dx = r.left + r.width / 2 - cx;
      const dy = r.top + r.height / 2 - cy;
      if (Math.sqrt(dx * dx + dy * dy) <= maxDistance) texts.push(node.textContent.trim());
    }
    return texts;
  };

  const formInfo = (el) => {
    const form = el.closest ? el.closest('form') : null;
    if (!form) return null;
    return {
      id: form.id || '',
      name: form.getAttribute('name') || '',
      class_name: typeof form.className === 'string' ? form.className : '',
      has_password: !!form.querySelector('input[type="password"]'),
      has_email: !!form.querySelector('input[type="email"]'),
    };
  };

  const labelText = (el) => {
    if (el.labels && el.labels.length) return normalize(el.labels[0].textContent);
    const label = el.closest ? el.closest('label') : null;
    return label && label !== el ? normalize(label.textContent) : '';
  };

  window.__replayDescribe = (el) => {
    if (!el || !el.tagName) return null;
    const tag = el.tagName.toLowerCase();
    const text = normalize(el.innerText || el.textContent);
    const prefix = text.substring(0, 20);
    let matches = 0;
    if (prefix) {
      for (const other of document.getElementsByTagName(tag)) {
        if (normalize(other.innerText || other.textContent).includes(prefix)) matches++;
      }
    }
    const ancestors = [];
    for (let node = el.parentElement; node; node = node.parentElement) {
      const [index, count] = position(node);
      ancestors.push({ tag: node.tagName.toLowerCase(), attributes: attributesOf(node), index, count });
    }
    const labelledby = el.getAttribute('aria-labelledby');
    const labelledTarget = labelledby ? document.getElementById(labelledby) : null;
    let value = null;
    if ('value' in el && typeof el.value === 'string') value = el.value;
    else if (el.isContentEditable) value = el.textContent || '';
    const [index, count] = position(el);
    return {
      tag,
      attributes: attributesOf(el),
      text: (el.innerText || el.textContent || '').substring(0, 500),
      value,
      visible: isVisible(el),
      enabled: !el.disabled,
      index,
      count,
      ancestors,
      text_match_count: matches,
      label_text: labelText(el),
      labelledby_text: labelledTarget ? normalize(labelledTarget.textContent) : '',
      nearby_text: nearbyText(el, 100),
      form: formInfo(el),
    };
  };
})()
"""

# Placeholders: __BINDING__ (exposed binding name) and __UI_PREFIX__ (recorder UI id/class prefix).
RECORDER_HOOK_TEMPLATE = r"""
(() => {
  if (window.__replayRecorderInstalled) return;
  window.__replayRecorderInstalled = true;

  const BINDING = '__BINDING__';
  const UI_PREFIX = '__UI_PREFIX__';

  const send = (payload) => {
    const binding = window[BINDING];
    if (typeof binding !== 'function') return;
    payload.timestamp = Date.now();
    try {
      binding(payload);
    } catch (err) {
      console.error('[replay] binding error', err);
    }
  };

  const isOwnUi = (el) => {
    for (let node = el; node && node.nodeType === 1; node = node.parentElement) {
      if (node.id && node.id.indexOf(UI_PREFIX) === 0) return true;
      const cls = typeof node.className === 'string' ? node.className : '';
      if (cls.split(/\s+/).some((token) => token.indexOf(UI_PREFIX) === 0)) return true;
    }
    return false;
  };

  const describe = (el) => window.__replayDescribe(el);

  const isFileInput = (el) =>
    el && el.tagName && el.tagName.toLowerCase() === 'input' && el.type === 'file';

  const associatedFileInput = (target) => {
    if (isFileInput(target)) return target;
    const tag = target.tagName.toLowerCase();
    if (tag === 'label' && target.htmlFor) {
      const associated = document.getElementById(target.htmlFor);
      if (isFileInput(associated)) return associated;
    }
    if (tag === 'label') {
      const inner = target.querySelector('input[type="file"]');
      if (inner) return inner;
    }
    for (const child of Array.from(target.children)) {
      if (isFileInput(child)) return child;
    }
    let parent = target.parentElement;
    for (let depth = 0; parent && depth < 2; depth++) {
      const cls = typeof parent.className === 'string' ? parent.className : '';
      const uploadContainer = cls.indexOf('upload') !== -1 || cls.indexOf('file') !== -1 ||
        parent.getAttribute('data-type') === 'upload' || parent.tagName.toLowerCase() === 'label';
      if (uploadContainer) {
        const inner = parent.querySelector('input[type="file"]');
        if (inner) return inner;
      }
      parent = parent.parentElement;
    }
    return null;
  };

  const watchedFileInputs = new WeakSet();

  const watchFileInput = (input) => {
    if (watchedFileInputs.has(input)) return;
    watchedFileInputs.add(input);
    input.addEventListener('change', (event) => {
      event.__replayHandled = true;
      watchedFileInputs.delete(input);
      const files = Array.from(input.files || []).map((file) => file.name);
      if (!files.length) return;
      send({
        event: 'file_selected',
        element: describe(input),
        file_names: files,
        multiple: !!input.multiple,
        accept: input.accept || '',
      });
    }, { once: true });
  };

  const isEditable = (el) => {
    const tag = el.tagName ? el.tagName.toLowerCase() : '';
    return tag === 'input' || tag === 'textarea' || el.isContentEditable;
  };

  document.addEventListener('click', (e) => {
    const target = e.target;
    if (!target || !target.tagName || isOwnUi(target)) return;
    const fileInput = associatedFileInput(target);
    if (fileInput) {
      watchFileInput(fileInput);
      send({ event: 'click', element: describe(target), file_input: describe(fileInput) });
      return;
    }
    send({ event: 'click', element: describe(target), x: e.clientX || 0, y: e.clientY || 0 });
  }, true);

  document.addEventListener('input', (e) => {
    const target = e.target;
    if (!target || !target.tagName || isOwnUi(target) || isFileInput(target)) return;
    if (!isEditable(target)) return;
    send({ event: 'input', element: describe(target) });
  }, true);

  document.addEventListener('blur', (e) => {
    const target = e.target;
    if (!target || !target.tagName || isOwnUi(target) || isFileInput(target)) return;
    if (!isEditable(target)) return;
    send({ event: 'blur', element: describe(target) });
  }, true);

  document.addEventListener('change', (e) => {
    const target = e.target;
    if (!target || !target.tagName || isOwnUi(target)) return;
    if (isFileInput(target)) {
      if (e.__replayHandled) return;
      const files = Array.from(target.files || []).map((file) => file.name);
      if (!files.length) return;
      send({
        event: 'file_selected',
        element: describe(target),
        file_names: files,
        multiple: !!target.multiple,
        accept: target.accept || '',
      });
      return;
    }
    const payload = { event: 'change', element: describe(target), checked: !!target.checked };
    if (target.tagName.toLowerCase() === 'select' && target.selectedIndex >= 0) {
      payload.selected_text = target.options[target.selectedIndex].text || '';
    }
    send(payload);
  }, true);

  document.addEventListener('keydown', (e) => {
    const target = e.target;
    if (!target || !target.tagName || isOwnUi(target)) return;
    send({
      event: 'keydown',
      element: describe(target),
      key: e.key || '',
      ctrl: !!e.ctrlKey,
      meta: !!e.metaKey,
    });
  }, true);

  let lastX = Math.round(window.scrollX || 0);
  let lastY = Math.round(window.scrollY || 0);
  document.addEventListener('scroll', () => {
    const x = Math.round(window.scrollX || 0);
    const y = Math.round(window.scrollY || 0);
    if (x === lastX && y === lastY) return;
    lastX = x;
    lastY = y;
    send({ event: 'scroll', scroll_x: x, scroll_y: y });
  }, true);
})()
"""

SNAPSHOT_CANDIDATES = ", ".join([
    'input:not([type="hidden"])',
    "textarea",
    "select",
    "button",
    "a[href]",
    '[role="button"]',
    '[role="link"]',
    '[role="menuitem"]',
    '[role="tab"]',
    '[role="checkbox"]',
    '[role="radio"]',
    "[onclick]",
    '[contenteditable="true"]',
])

SNAPSHOT_COLLECTOR_JS = (
    "(selector) => Array.from(document.querySelectorAll(selector))"
    ".map((el) => window.__replayDescribe(el)).filter(Boolean)"
)


def recorder_hook(binding_name: str, ui_prefix: str) -> str:
    """Recorder hook source with the binding name and UI prefix filled in."""
    return (
        RECORDER_HOOK_TEMPLATE
        .replace("__BINDING__", binding_name)
        .replace("__UI_PREFIX__", ui_prefix)
    )
